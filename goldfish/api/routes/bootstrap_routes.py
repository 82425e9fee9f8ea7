#!/usr/bin/env python3
"""
Bootstrap Routes - exchange a wrapping token when goldfish started without one
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..dependencies import ServerDependencies
from ...vault.bootstrap import BootstrapError, bootstrap_credentials
from ...vault.client import VaultClient

logger = logging.getLogger("goldfish.server")


class BootstrapRequest(BaseModel):
    wrapping_token: str = Field(..., min_length=1)


def create_bootstrap_routes(deps: ServerDependencies) -> APIRouter:
    """Create runtime bootstrap route."""
    router = APIRouter()

    @router.post("/v1/bootstrap")
    def bootstrap(body: BootstrapRequest, request: Request,
                  client: VaultClient = Depends(deps.require_unbootstrapped)):
        """Unwrap the given token and install the service credential."""
        try:
            bootstrap_credentials(client, body.wrapping_token, dev_mode=deps.dev_mode, source="api", request=request)
        except BootstrapError as e:
            logger.warning("Runtime bootstrap failed: %s", e)
            raise HTTPException(status_code=400, detail=str(e))
        return {"result": "success"}

    return router
