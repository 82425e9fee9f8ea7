"""Vault API client shared by the whole goldfish process."""

import json
import logging
import ssl
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.config import ConfigError, VaultConfig

logger = logging.getLogger("goldfish.vault")


class VaultError(RuntimeError):
    """Vault rejected a request or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.status = status
        self.errors = errors or []


@dataclass(frozen=True)
class ServiceCredential:
    """Long-lived vault token goldfish acts with. Never written to disk."""

    token: str = field(repr=False)
    accessor: Optional[str] = None
    policies: tuple = ()
    lease_duration: int = 0
    renewable: bool = False


class VaultClient:
    """Client for the Vault HTTP API."""

    def __init__(self, config: Optional[VaultConfig] = None):
        """
        Initialize Vault client.

        Args:
            config: Connection parameters. May be given later via set_config().
        """
        self._lock = threading.Lock()
        self._credential: Optional[ServiceCredential] = None
        self.config: Optional[VaultConfig] = None
        self.base_url = ""
        self._ssl_context: Optional[ssl.SSLContext] = None
        if config is not None:
            self.set_config(config)

    # ---------- Connection ----------

    def set_config(self, config: VaultConfig) -> None:
        """Set connection parameters for all later requests."""
        try:
            ssl_context = self._create_ssl_context(config)
        except OSError as e:
            # ssl.SSLError is an OSError too
            raise ConfigError(f"cannot load vault ca_cert {config.ca_cert}: {e}") from e
        self.config = config
        self.base_url = config.address.rstrip("/")
        self._ssl_context = ssl_context
        logger.info("vault address set to %s", self.base_url)

    @staticmethod
    def _create_ssl_context(config: VaultConfig) -> ssl.SSLContext:
        """Create SSL context honouring tls_skip_verify and ca_cert."""
        if config.tls_skip_verify:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            return ssl_context
        return ssl.create_default_context(cafile=config.ca_cert)

    # ---------- Credential ----------

    def install_credential(self, credential: ServiceCredential) -> None:
        """Install the service credential. Only the first install wins."""
        with self._lock:
            if self._credential is not None:
                raise VaultError("a service credential is already installed")
            self._credential = credential

    @property
    def credential(self) -> Optional[ServiceCredential]:
        return self._credential

    @property
    def is_bootstrapped(self) -> bool:
        return self._credential is not None

    # ---------- Requests ----------

    def request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        wrap_ttl: Optional[str] = None,
        accept_status: tuple = (),
    ) -> Dict[str, Any]:
        """
        Send a request to the Vault API.

        Args:
            method: HTTP method
            path: API path below /v1/ (e.g., "sys/health")
            data: JSON body
            token: X-Vault-Token to send; defaults to the installed credential
            wrap_ttl: ask Vault to response-wrap the result with this TTL
            accept_status: non-2xx status codes to return instead of raising

        Returns:
            Parsed JSON response (empty dict for empty bodies)

        Raises:
            VaultError: On HTTP or connection errors
        """
        if not self.base_url:
            raise VaultError("vault client is not configured")

        url = f"{self.base_url}/v1/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if token is None and self._credential is not None:
            token = self._credential.token
        if token:
            headers["X-Vault-Token"] = token
        if wrap_ttl:
            headers["X-Vault-Wrap-TTL"] = wrap_ttl

        body = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        ssl_context = self._ssl_context if url.startswith("https://") else None
        timeout = self.config.timeout if self.config else 10

        try:
            with urllib.request.urlopen(req, timeout=timeout, context=ssl_context) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace") if e.fp else ""
            if e.code in accept_status:
                return self._decode(method, path, raw)
            raise self._http_error(method, path, e.code, raw) from e
        except urllib.error.URLError as e:
            raise VaultError(f"failed to reach vault at {self.base_url}: {e.reason}") from e

        return self._decode(method, path, raw)

    @staticmethod
    def _decode(method: str, path: str, raw: str) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise VaultError(f"{method} /v1/{path.lstrip('/')} returned a response that is not a JSON object: {raw[:80]!r}")
        return payload

    @staticmethod
    def _http_error(method: str, path: str, status: int, raw: str) -> VaultError:
        try:
            errors = json.loads(raw).get("errors") or []
        except (ValueError, AttributeError):
            errors = [raw] if raw else []
        detail = "; ".join(str(e) for e in errors) or "no error detail"
        return VaultError(f"{method} /v1/{path.lstrip('/')} failed ({status}): {detail}", status=status, errors=errors)

    def unwrap(self, wrapping_token: str) -> ServiceCredential:
        """
        Unwrap a response-wrapped token into the service credential it carries.

        The wrapping token authenticates its own unwrap; Vault invalidates it
        after the first use, so a second call with the same token fails.
        """
        resp = self.request("POST", "sys/wrapping/unwrap", token=wrapping_token)
        return self._credential_from(resp)

    @staticmethod
    def _credential_from(resp: Dict[str, Any]) -> ServiceCredential:
        auth = resp.get("auth") or {}
        if auth.get("client_token"):
            return ServiceCredential(
                token=auth["client_token"],
                accessor=auth.get("accessor"),
                policies=tuple(auth.get("policies") or ()),
                lease_duration=int(auth.get("lease_duration") or 0),
                renewable=bool(auth.get("renewable")),
            )
        data = resp.get("data") or {}
        if data.get("token"):
            return ServiceCredential(token=data["token"])
        raise VaultError("unwrapped response does not contain a token")

    def health(self) -> Dict[str, Any]:
        """Vault health status; sealed/standby/uninitialized codes are returned, not raised."""
        return self.request("GET", "sys/health", token="", accept_status=(429, 472, 473, 501, 503))


# Process-wide client; configured once at startup, read by every route
vault_client = VaultClient()
