"""
Ephemeral vault dev server for local iteration (`goldfish --dev`).

Runs `vault server -dev` as a managed subprocess, seeds it with what goldfish
needs (transit key, service policy) and mints a wrapped service token.
The subprocess lives until the liveness channel is closed.
"""

import logging
import secrets
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..core.config import DeploymentConfig, build_config
from ..core.lifecycle import DEFAULT_GRACE_PERIOD, LivenessChannel
from .client import VaultClient, VaultError

logger = logging.getLogger("goldfish.dev")

DEV_VAULT_LISTEN = "127.0.0.1:8200"
DEV_LISTENER_ADDRESS = "127.0.0.1:8000"
DEV_READY_TIMEOUT = 10.0
SERVICE_NAME = "goldfish"
WRAP_TTL = "20m"

SERVICE_POLICY = """
path "secret/goldfish*" {
  capabilities = ["read", "update"]
}

path "transit/encrypt/goldfish" {
  capabilities = ["read", "update"]
}

path "transit/decrypt/goldfish" {
  capabilities = ["read", "update"]
}

path "sys/wrapping/*" {
  capabilities = ["read", "update"]
}

path "sys/mounts" {
  capabilities = ["read"]
}
"""


class DevVaultError(RuntimeError):
    """The dev vault server could not be started or seeded."""


@dataclass
class DevBackend:
    config: DeploymentConfig
    wrapping_token: str
    liveness: LivenessChannel
    root_token: str


class DevVault:
    """Owns the `vault server -dev` subprocess."""

    def __init__(
        self,
        vault_binary: str = "vault",
        listen_address: str = DEV_VAULT_LISTEN,
        ready_timeout: float = DEV_READY_TIMEOUT,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.vault_binary = vault_binary
        self.listen_address = listen_address
        self.ready_timeout = ready_timeout
        self.grace_period = grace_period
        self._popen = popen
        self._proc: Optional[subprocess.Popen] = None
        self._watcher: Optional[threading.Thread] = None
        self.liveness = LivenessChannel()

    def command(self, binary: str, root_token: str) -> List[str]:
        return [
            binary, "server", "-dev",
            f"-dev-root-token-id={root_token}",
            f"-dev-listen-address={self.listen_address}",
        ]

    def start(self) -> DevBackend:
        """Start and seed the dev server. Raises DevVaultError on any failure."""
        binary = shutil.which(self.vault_binary)
        if binary is None:
            raise DevVaultError(f"'{self.vault_binary}' not found in PATH; dev mode needs the vault binary")

        root_token = secrets.token_hex(16)
        logger.info("Starting local vault dev instance on %s", self.listen_address)
        try:
            # stdout is inherited: vault prints the unseal key and root token itself
            self._proc = self._popen(self.command(binary, root_token))
        except OSError as e:
            raise DevVaultError(f"failed to start vault dev server: {e}") from e

        self._watcher = threading.Thread(target=self._watch, name="goldfish-dev-vault", daemon=True)
        self._watcher.start()

        config = self.deployment_config()
        client = VaultClient(config.vault)
        try:
            self._wait_ready(client)
            wrapping_token = self._seed(client, root_token)
        except (DevVaultError, VaultError) as e:
            self.stop()
            if isinstance(e, DevVaultError):
                raise
            raise DevVaultError(f"failed to set up vault dev server: {e}") from e

        return DevBackend(config=config, wrapping_token=wrapping_token, liveness=self.liveness, root_token=root_token)

    def deployment_config(self) -> DeploymentConfig:
        return build_config(
            {
                "listener": {"address": DEV_LISTENER_ADDRESS, "tls_disable": True},
                "vault": {"address": f"http://{self.listen_address}", "tls_skip_verify": True},
                "log_level": "INFO",
            },
            source="dev mode",
        )

    def _wait_ready(self, client: VaultClient) -> None:
        deadline = time.monotonic() + self.ready_timeout
        last_error = "no response"
        while time.monotonic() < deadline:
            code = self._proc.poll()
            if code is not None:
                raise DevVaultError(f"vault dev server exited with status {code}")
            try:
                status = client.health()
                if status.get("initialized") and not status.get("sealed"):
                    logger.debug("vault dev server is ready")
                    return
                last_error = f"health: {status}"
            except VaultError as e:
                last_error = str(e)
            time.sleep(0.2)
        raise DevVaultError(f"vault dev server not ready after {self.ready_timeout}s: {last_error}")

    def _seed(self, client: VaultClient, root_token: str) -> str:
        """Mount transit, write the service policy, return a wrapped service token."""
        client.request("POST", "sys/mounts/transit", {"type": "transit"}, token=root_token)
        client.request("POST", f"transit/keys/{SERVICE_NAME}", {}, token=root_token)
        client.request("PUT", f"sys/policies/acl/{SERVICE_NAME}", {"policy": SERVICE_POLICY}, token=root_token)

        resp = client.request(
            "POST",
            "auth/token/create",
            {"policies": [SERVICE_NAME], "display_name": SERVICE_NAME, "period": "24h"},
            token=root_token,
            wrap_ttl=WRAP_TTL,
        )
        wrapping_token = (resp.get("wrap_info") or {}).get("token")
        if not wrapping_token:
            raise DevVaultError("vault did not return a wrapped token")
        return wrapping_token

    def stop(self) -> None:
        """Close the liveness channel and wait for the subprocess to go away."""
        self.liveness.close()
        if self._watcher is not None and self._watcher is not threading.current_thread():
            self._watcher.join(self.grace_period * 2 + 1)

    def _watch(self) -> None:
        self.liveness.wait()
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        logger.info("stopping vault dev server (pid %s)", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning("vault dev server did not stop within %.1fs; killing it", self.grace_period)
            proc.kill()
            proc.wait()
