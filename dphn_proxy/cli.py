"""Entry points for launching the FastAPI proxy via uvicorn."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import os

import uvicorn

from .app import create_app
from .config import ProxySettings


DEFAULT_DEBUG_PATH = "/tmp/debug_dphnproxy.log"


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format="%(message)s")
logger = logging.getLogger(__name__)


def _resolve_debug_settings(debug_arg: str | None, current_path: str | None) -> tuple[bool, str | None]:
    """Return debug enabled flag and chosen path based on CLI input."""

    if debug_arg is None:
        return False, current_path

    candidate = debug_arg.strip()
    return True, candidate or current_path or DEFAULT_DEBUG_PATH


def _build_settings(args: argparse.Namespace) -> ProxySettings:
    """Construct ProxySettings from the environment, then apply CLI overrides."""

    settings = ProxySettings.from_env()
    overrides: dict = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.upstream_url:
        overrides["upstream_url"] = args.upstream_url
    if args.timeout is not None:
        overrides["upstream_timeout"] = args.timeout if args.timeout > 0 else None

    debug_enabled, debug_path = _resolve_debug_settings(args.debug, settings.debug_sse_path)
    if debug_enabled:
        overrides["debug_sse_enabled"] = True
        overrides["debug_sse_path"] = debug_path
    return dataclasses.replace(settings, **overrides)


def _log_configuration(settings: ProxySettings) -> None:
    """Emit a concise summary of the active configuration values."""

    debug_display = (settings.debug_sse_path or "logger") if settings.debug_sse_enabled else "disabled"
    timeout_display = f"{settings.upstream_timeout:g}s" if settings.upstream_timeout else "none"
    logger.info("[Config] Port: %s", settings.port)
    logger.info("[Config] Upstream: %s", settings.upstream_url)
    logger.info(
        "[Config] host=%s default_model=%s timeout=%s debug=%s",
        settings.host,
        settings.default_model,
        timeout_display,
        debug_display,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the DPHN OpenAI proxy server")
    parser.add_argument("--host", default=None, help="Host interface to bind (env HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (env PORT)")
    parser.add_argument("--upstream-url", default=None, help="Upstream chat endpoint (env UPSTREAM_URL)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Total upstream deadline in seconds, 0 disables (env UPSTREAM_TIMEOUT)",
    )
    parser.add_argument(
        "--debug",
        metavar="PATH",
        nargs="?",
        const="",
        default=None,
        help="Enable SSE debug tracing, written to PATH when given",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    settings = _build_settings(parse_args(argv))
    _log_configuration(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    run()
