#!/usr/bin/env python3
"""
goldfish API Dependencies - vault client access for route handlers
"""

from fastapi import HTTPException, status

from ..vault.client import VaultClient



class ServerDependencies:
    """Container for the process-wide vault client and run mode."""

    def __init__(self, client: VaultClient, dev_mode: bool = False):
        self.client = client
        self.dev_mode = dev_mode

    def get_client(self) -> VaultClient:
        return self.client

    def require_unbootstrapped(self) -> VaultClient:
        """Runtime bootstrap is only allowed while no credential is installed."""
        if self.client.is_bootstrapped:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="goldfish is already bootstrapped")
        return self.client
