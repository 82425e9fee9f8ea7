#!/usr/bin/env python3
"""
goldfish Listeners

Runs the resolved transport plan with uvicorn:
- the redirect listener (if any) binds first and serves on its own thread;
  any failure there is logged and never stops the primary listener
- the primary listener binds and serves on the calling thread; a bind
  failure is fatal and carries the OS error unchanged
"""

import logging
import socket
import threading
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI

from ..certificates.certificate_manager import challenge_dir, load_explicit_certificate, obtain_certificate
from ..transport import (
    AutomaticCertificate,
    ExplicitCertificate,
    PlaintextOnly,
    PlaintextWithRedirect,
    TransportDecision,
    TransportPlan,
    describe,
)
from .server import create_redirect_app

logger = logging.getLogger("goldfish.listeners")


class ListenerError(RuntimeError):
    """The primary listener could not bind its address."""


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on host:port. Raises OSError unchanged."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.create_server((host, port), family=family, backlog=2048)


def build_server(app: FastAPI, ssl_certfile: Optional[str] = None, ssl_keyfile: Optional[str] = None) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        # keep goldfish's logging setup; uvicorn loggers propagate to root
        log_config=None,
        access_log=True,
        server_header=False,
    )
    return uvicorn.Server(config)


class RedirectListener:
    """Plaintext listener that redirects to https, isolated from the primary."""

    def __init__(self, redirect: PlaintextWithRedirect, app: FastAPI):
        self.redirect = redirect
        self.app = app
        self.server: Optional[uvicorn.Server] = None
        self.thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """Bind and start serving in the background. Returns False if it could not bind."""
        try:
            sock = bind_socket(self.redirect.host, self.redirect.port)
        except OSError as e:
            logger.error("redirect listener %s failed to bind: %s", describe(self.redirect), e)
            return False

        self.server = build_server(self.app)
        self.thread = threading.Thread(target=self._serve, args=(sock,), name="goldfish-redirect", daemon=True)
        self.thread.start()
        logger.info("redirect listener on %s", describe(self.redirect))
        return True

    def _serve(self, sock: socket.socket) -> None:
        try:
            self.server.run(sockets=[sock])
        except (Exception, SystemExit) as e:
            logger.error("redirect listener %s stopped: %s", describe(self.redirect), e)
        finally:
            sock.close()

    def stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True


def resolve_certificate(primary: TransportDecision) -> Tuple[Optional[str], Optional[str]]:
    """Cert/key files for the primary listener; (None, None) for plaintext."""
    if isinstance(primary, PlaintextOnly):
        return None, None
    if isinstance(primary, ExplicitCertificate):
        return load_explicit_certificate(primary)
    if isinstance(primary, AutomaticCertificate):
        return obtain_certificate(primary)
    raise TypeError(f"unknown transport decision: {primary!r}")


def start_redirect_listener(plan: TransportPlan) -> Optional[RedirectListener]:
    if plan.redirect is None:
        return None
    webroot = None
    if plan.redirect.serve_acme_challenge and isinstance(plan.primary, AutomaticCertificate):
        webroot = challenge_dir(plan.primary.cache_dir)
    listener = RedirectListener(plan.redirect, create_redirect_app(plan.redirect, webroot))
    listener.start()
    return listener


def serve_primary(app: FastAPI, primary: TransportDecision, cert: Optional[str], key: Optional[str]) -> None:
    try:
        sock = bind_socket(primary.host, primary.port)
    except OSError as e:
        raise ListenerError(f"primary listener {describe(primary)} failed to bind: {e}") from e

    logger.info("goldfish listening on %s", describe(primary))
    try:
        build_server(app, ssl_certfile=cert, ssl_keyfile=key).run(sockets=[sock])
    finally:
        sock.close()


def run_listeners(plan: TransportPlan, app: FastAPI) -> None:
    """
    Serve `app` according to `plan` until the primary listener stops.

    The redirect listener starts before the certificate is resolved: in
    automatic mode it has to answer the ACME challenge.

    Raises:
        CertificateError: no usable certificate for the secure listener
        ListenerError: the primary listener could not bind
    """
    redirect = start_redirect_listener(plan)
    try:
        cert, key = resolve_certificate(plan.primary)
        serve_primary(app, plan.primary, cert, key)
    finally:
        if redirect is not None:
            redirect.stop()
