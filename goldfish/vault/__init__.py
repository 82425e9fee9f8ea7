"""goldfish vault access: HTTP client, credential bootstrap, dev server."""

from .client import ServiceCredential, VaultClient, VaultError, vault_client

__all__ = ["ServiceCredential", "VaultClient", "VaultError", "vault_client"]
