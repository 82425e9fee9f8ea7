#!/usr/bin/env python3
"""
goldfish Deployment Configuration

Sections:
- listener: where and how the web server listens (TLS mode, cert files, redirect)
- vault:    how the process-wide vault client connects to the backend

Rules:
- tls_cert_file and tls_key_file are set together or not at all
- 0/1 are accepted for booleans (older deployment files use them)
- the loaded config is frozen; nothing mutates it after startup
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

logger = logging.getLogger("goldfish.config")

DEFAULT_ACME_CACHE_DIR = "/var/www/.cache"


class ConfigError(ValueError):
    """Deployment configuration is missing or malformed."""


class ListenerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = "127.0.0.1:8000"
    tls_disable: bool = False
    tls_autoredirect: bool = False
    tls_cert_file: str = ""
    tls_key_file: str = ""
    # Automatic certificates only
    acme_cache_dir: str = DEFAULT_ACME_CACHE_DIR
    acme_email: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _address_parses(cls, v: str) -> str:
        # ConfigError is a ValueError, so pydantic reports it as a validation error
        parse_address(v, 0)
        return v

    @field_validator("tls_cert_file", "tls_key_file", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return "" if v is None else v

    @model_validator(mode="after")
    def _cert_and_key_together(self) -> "ListenerConfig":
        if bool(self.tls_cert_file) != bool(self.tls_key_file):
            raise ValueError("tls_cert_file and tls_key_file must both be set or both be empty")
        return self

    @property
    def has_certificate_files(self) -> bool:
        return bool(self.tls_cert_file and self.tls_key_file)


class VaultConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = "http://127.0.0.1:8200"
    tls_skip_verify: bool = False
    ca_cert: Optional[str] = None
    timeout: int = 10


class DeploymentConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    listener: ListenerConfig
    vault: VaultConfig
    log_level: str = "INFO"
    # Overrides the bundled public/ directory
    assets_dir: Optional[str] = None


def build_config(data: dict, source: str = "<dict>") -> DeploymentConfig:
    """Validate raw config data, raising ConfigError with the source attached."""
    try:
        return DeploymentConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration in {source}: {e}") from e
    except TypeError as e:
        raise ConfigError(f"invalid configuration in {source}: {e}") from e


def load_config_from(path: str) -> DeploymentConfig:
    """Load deployment configuration from YAML file."""
    if not path:
        raise ConfigError("no configuration file given")
    config_file = Path(path)
    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read configuration file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse configuration file {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"configuration file {config_file} must contain a mapping")

    logger.info("Loaded configuration from: %s", config_file)
    return build_config(data, str(config_file))


def split_host_port(address: str) -> Tuple[str, Optional[str]]:
    """
    Split a listener address into its host and port text.

    Accepts "host:port", ":port", "[v6addr]:port" and a bare host.
    """
    address = (address or "").strip()

    if address.startswith("["):
        end = address.find("]")
        if end == -1:
            raise ConfigError(f"invalid listener address: {address!r}")
        rest = address[end + 1:]
        if rest and not rest.startswith(":"):
            raise ConfigError(f"invalid listener address: {address!r}")
        return address[1:end], (rest[1:] or None)
    if address.count(":") == 1:
        host, port = address.split(":", 1)
        return host, (port or None)
    # bare host, or IPv6 without brackets
    return address, None


def parse_address(address: str, default_port: int) -> Tuple[str, int]:
    """Resolve a listener address to a bindable (host, port); empty host means all interfaces."""
    host, port = split_host_port(address)
    if port is None:
        return (host or "0.0.0.0", default_port)
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in listener address: {address!r}") from None
    if not 0 < port_number < 65536:
        raise ConfigError(f"port out of range in listener address: {address!r}")
    return (host or "0.0.0.0", port_number)


def listener_hostname(address: str) -> str:
    """Host part of a listener address, empty if it only names a port."""
    return split_host_port(address)[0]
