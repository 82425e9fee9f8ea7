#!/usr/bin/env python3
"""
goldfish Server Composition

Builds the FastAPI apps for an already resolved transport plan:
- create_app():          API routes, static assets, middleware
- create_redirect_app(): plaintext listener that only redirects to https
                         (and answers ACME challenges in automatic mode)

No transport or credential decisions are made here.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from ..api.dependencies import ServerDependencies
from ..api.routes.bootstrap_routes import create_bootstrap_routes
from ..api.routes.health_routes import create_health_routes
from ..transport import HTTPS_PORT, PlaintextWithRedirect, TransportPlan
from ..vault.client import VaultClient

logger = logging.getLogger("goldfish.server")

BODY_LIMIT = 32 * 1024 * 1024
GZIP_LEVEL = 5
DEFAULT_ASSETS_DIR = Path(__file__).resolve().parent.parent / "public"
ASSET_PREFIXES = ("css", "js", "fonts", "img")

SECURITY_HEADERS = {
    "X-XSS-Protection": "1; mode=block",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Content-Security-Policy": "default-src 'self' blob: 'unsafe-inline' buttons.github.io api.github.com;",
}

_ACME_TOKEN = re.compile(r"^[A-Za-z0-9_-]+$")


def create_app(
    plan: TransportPlan,
    client: VaultClient,
    dev_mode: bool = False,
    assets_dir: Optional[str] = None,
) -> FastAPI:
    """Create the goldfish FastAPI app."""
    app = FastAPI(title="goldfish", docs_url=None, redoc_url=None, openapi_url=None)
    deps = ServerDependencies(client=client, dev_mode=dev_mode)

    app.add_middleware(GZipMiddleware, minimum_size=1024, compresslevel=GZIP_LEVEL)

    @app.middleware("http")
    async def body_limit(request: Request, call_next):
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > BODY_LIMIT:
            return JSONResponse(status_code=413, content={"error": "request body too large"})
        return await call_next(request)

    if plan.security_headers:
        add_security_headers(app)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "internal server error"})

    # Production serves the bundled UI; in dev mode the npm dev server does
    if not dev_mode:
        mount_static_assets(app, Path(assets_dir) if assets_dir else DEFAULT_ASSETS_DIR)

    app.include_router(create_health_routes(deps))
    app.include_router(create_bootstrap_routes(deps))
    return app


def add_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


def mount_static_assets(app: FastAPI, directory: Path) -> bool:
    """Serve index.html at / and the asset folders under /assets/."""
    index = directory / "index.html"
    if not index.is_file():
        logger.warning("Static assets not found in %s; UI will not be served", directory)
        return False

    @app.get("/", include_in_schema=False)
    def index_page():
        return FileResponse(index)

    for prefix in ASSET_PREFIXES:
        app.mount(
            f"/assets/{prefix}",
            StaticFiles(directory=directory / "assets" / prefix, check_dir=False),
            name=f"assets-{prefix}",
        )
    logger.info("Serving static assets from %s", directory)
    return True


def https_url(request: Request, secure_port: int = HTTPS_PORT) -> str:
    """The https:// equivalent of the request URL."""
    host = request.headers.get("host") or request.url.hostname or ""
    if host.startswith("["):
        host = host[:host.find("]") + 1]
    elif ":" in host:
        host = host.split(":", 1)[0]
    if secure_port != HTTPS_PORT:
        host = f"{host}:{secure_port}"
    url = f"https://{host}{request.url.path}"
    if request.url.query:
        url += f"?{request.url.query}"
    return url


def create_redirect_app(redirect: PlaintextWithRedirect, acme_webroot: Optional[Path] = None) -> FastAPI:
    """Create the plaintext app that 301-redirects everything to https."""
    app = FastAPI(title="goldfish-redirect", docs_url=None, redoc_url=None, openapi_url=None)
    # the redirect listener only exists alongside a secure primary
    add_security_headers(app)

    if acme_webroot is not None:
        @app.get("/.well-known/acme-challenge/{token}")
        def acme_challenge(token: str):
            path = acme_webroot / ".well-known" / "acme-challenge" / token
            if not _ACME_TOKEN.match(token) or not path.is_file():
                raise HTTPException(status_code=404, detail="unknown challenge")
            return FileResponse(path, media_type="text/plain")

    @app.api_route(
        "/{path:path}",
        methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        include_in_schema=False,
    )
    def redirect_to_https(request: Request, path: str):
        return RedirectResponse(https_url(request, redirect.secure_port), status_code=301)

    return app
