#!/usr/bin/env python3
"""
goldfish Transport Mode Selection

Maps the listener section of the deployment config to exactly one primary
transport plus the auxiliary plaintext redirect listener, if any.

Priority (first match wins):
1. tls_disable                  -> PlaintextOnly, nothing else
2. cert file + key file         -> ExplicitCertificate (+ redirect if tls_autoredirect)
3. otherwise                    -> AutomaticCertificate + redirect, always

Automatic certificates ignore tls_autoredirect: the plaintext listener is
needed to answer the ACME http-01 challenge, so it is always started.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .core.config import ListenerConfig, listener_hostname, parse_address

HTTP_PORT = 80
HTTPS_PORT = 443
DEFAULT_LISTENER_PORT = 8000


@dataclass(frozen=True)
class PlaintextOnly:
    host: str
    port: int


@dataclass(frozen=True)
class ExplicitCertificate:
    host: str
    port: int
    cert_file: str
    key_file: str


@dataclass(frozen=True)
class AutomaticCertificate:
    host_whitelist: Tuple[str, ...]
    cache_dir: str
    email: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = HTTPS_PORT


@dataclass(frozen=True)
class PlaintextWithRedirect:
    """Plaintext listener answering every request with a 301 to https."""
    host: str = "0.0.0.0"
    port: int = HTTP_PORT
    secure_port: int = HTTPS_PORT
    serve_acme_challenge: bool = False


TransportDecision = Union[PlaintextOnly, ExplicitCertificate, AutomaticCertificate]


@dataclass(frozen=True)
class TransportPlan:
    primary: TransportDecision
    redirect: Optional[PlaintextWithRedirect] = None
    security_headers: bool = False

    @property
    def is_secure(self) -> bool:
        return not isinstance(self.primary, PlaintextOnly)


def resolve_transport(listener: ListenerConfig) -> TransportPlan:
    """Resolve the transport plan for a listener config. Pure; no I/O."""
    if listener.tls_disable:
        host, port = parse_address(listener.address, DEFAULT_LISTENER_PORT)
        return TransportPlan(primary=PlaintextOnly(host=host, port=port))

    if listener.has_certificate_files:
        host, port = parse_address(listener.address, HTTPS_PORT)
        primary = ExplicitCertificate(
            host=host,
            port=port,
            cert_file=listener.tls_cert_file,
            key_file=listener.tls_key_file,
        )
        redirect = PlaintextWithRedirect() if listener.tls_autoredirect else None
        return TransportPlan(primary=primary, redirect=redirect, security_headers=True)

    hostname = listener_hostname(listener.address)
    primary = AutomaticCertificate(
        host_whitelist=(hostname,) if hostname else (),
        cache_dir=listener.acme_cache_dir,
        email=listener.acme_email,
    )
    return TransportPlan(
        primary=primary,
        redirect=PlaintextWithRedirect(serve_acme_challenge=True),
        security_headers=True,
    )


def describe(decision: Union[TransportDecision, PlaintextWithRedirect]) -> str:
    """Short operator-facing description of a listener."""
    if isinstance(decision, PlaintextOnly):
        return f"http://{decision.host}:{decision.port}"
    if isinstance(decision, ExplicitCertificate):
        return f"https://{decision.host}:{decision.port} (cert={decision.cert_file})"
    if isinstance(decision, AutomaticCertificate):
        hosts = ",".join(decision.host_whitelist) or "<none>"
        return f"https://{decision.host}:{decision.port} (automatic certificate for {hosts})"
    if isinstance(decision, PlaintextWithRedirect):
        return f"http://{decision.host}:{decision.port} -> https:{decision.secure_port}"
    raise TypeError(f"unknown transport decision: {decision!r}")
