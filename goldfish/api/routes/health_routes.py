#!/usr/bin/env python3
"""
Health Routes - goldfish and vault liveness
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import ServerDependencies
from ...vault.client import VaultClient, VaultError

logger = logging.getLogger("goldfish.server")


def create_health_routes(deps: ServerDependencies) -> APIRouter:
    """Create health check routes."""
    router = APIRouter()

    @router.get("/v1/health")
    def health():
        """goldfish itself is up."""
        return {"status": "ok"}

    @router.get("/v1/vaulthealth")
    def vault_health(client: VaultClient = Depends(deps.get_client)):
        """Relay vault's sys/health, plus whether goldfish holds a credential."""
        try:
            status = client.health()
        except VaultError as e:
            logger.error("Vault health check failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e))
        return {"vault": status, "bootstrapped": client.is_bootstrapped}

    return router
