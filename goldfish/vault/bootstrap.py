"""
Credential bootstrap: exchange a single-use wrapping token for the service
credential the vault client acts with.

The wrapping token is unwrapped once and then dropped. Its raw value is only
ever shown to the operator in development mode.
"""

import logging
from typing import Optional

from fastapi import Request

from ..core.audit import audit_logger
from .client import ServiceCredential, VaultClient, VaultError

logger = logging.getLogger("goldfish.bootstrap")


class BootstrapError(RuntimeError):
    """The wrapping token could not be exchanged for a credential."""


def bootstrap_credentials(
    client: VaultClient,
    wrapping_token: str,
    dev_mode: bool = False,
    source: str = "startup",
    request: Optional[Request] = None,
) -> Optional[ServiceCredential]:
    """
    Unwrap `wrapping_token` and install the resulting credential into `client`.

    An empty token is a no-op: no request is made and None is returned.

    Raises:
        BootstrapError: unwrap rejected (expired, already used, malformed) or
            a credential is already installed
    """
    if not wrapping_token:
        logger.info("no wrapping token given; waiting for bootstrap via /v1/bootstrap")
        return None

    try:
        credential = client.unwrap(wrapping_token)
        client.install_credential(credential)
    except VaultError as e:
        audit_logger.credential_bootstrap(
            success=False, source=source, details={"status": e.status, "reason": str(e)}, request=request
        )
        raise BootstrapError(f"failed to unwrap wrapping token: {e}") from e

    audit_logger.credential_bootstrap(
        success=True,
        source=source,
        details={"accessor": credential.accessor, "policies": list(credential.policies)},
        request=request,
    )
    if dev_mode:
        logger.info("goldfish bootstrapped to vault with wrapping token %s", wrapping_token)
    else:
        logger.info("goldfish bootstrapped to vault")
    return credential
