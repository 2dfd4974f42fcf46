"""FastAPI application factory for the DPHN proxy."""
from __future__ import annotations

import logging
from typing import Optional

from aiohttp import ClientSession, ClientTimeout
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ProxySettings
from .routes import AuthError, router

logger = logging.getLogger(__name__)


def create_app(settings: ProxySettings | None = None) -> FastAPI:
    """Build the FastAPI app with configured routers and lifespan hooks."""

    settings = settings or ProxySettings.from_env()

    app = FastAPI(
        title="DPHN OpenAI Proxy",
        description="OpenAI-compatible chat completions in front of the DPHN SSE chat service.",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    app.state.settings = settings
    app.state.http_client = None

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": {
                    "message": exc.message,
                    "type": "invalid_request_error",
                    "code": 401,
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.on_event("startup")
    async def on_startup() -> None:  # pragma: no cover - exercised at runtime
        app.state.http_client = ClientSession(
            timeout=ClientTimeout(total=settings.upstream_timeout, sock_read=None)
        )
        logger.info("✓ Upstream session ready for %s", settings.upstream_url)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:  # pragma: no cover - exercised at runtime
        client: Optional[ClientSession] = app.state.http_client
        if client and not client.closed:
            await client.close()

    return app
