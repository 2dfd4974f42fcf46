"""Configuration helpers for the DPHN FastAPI proxy."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_API_KEY = "1"
DEFAULT_UPSTREAM_URL = "https://chat.dphn.ai/api/chat"

# Static model list served by /v1/models; the first entry is the default model.
AVAILABLE_MODELS: list[dict] = [
    {"id": "dolphinserver:24B", "object": "model", "created": 1677610602, "owned_by": "dphn"},
    {"id": "dolphinserver2:8B", "object": "model", "created": 1677610602, "owned_by": "dphn"},
]
DEFAULT_MODEL = AVAILABLE_MODELS[0]["id"]

# The upstream only answers clients that look like its own mobile web UI.
UPSTREAM_HEADERS: dict[str, str] = {
    "authority": "chat.dphn.ai",
    "accept": "text/event-stream",
    "accept-language": "vi-VN,vi;q=0.9",
    "cache-control": "no-cache",
    "content-type": "application/json",
    "origin": "https://chat.dphn.ai",
    "referer": "https://chat.dphn.ai/",
    "sec-ch-ua": '"Chromium";v="137", "Not/A)Brand";v="24"',
    "sec-ch-ua-mobile": "?1",
    "sec-ch-ua-platform": '"Android"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin",
    "user-agent": "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Mobile Safari/537.36",
}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s=%r, using %s", name, raw, default)
        return default


def _timeout_env(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid timeout in %s=%r, upstream deadline disabled", name, raw)
        return None
    return value if value > 0 else None


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class ProxySettings:
    """Runtime configuration values for the proxy service.

    Built once at start-up and handed to the app factory; request handlers
    read it from ``app.state.settings`` and never from the environment.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    api_key: str = DEFAULT_API_KEY
    upstream_url: str = DEFAULT_UPSTREAM_URL
    default_model: str = DEFAULT_MODEL
    upstream_timeout: Optional[float] = None
    upstream_headers: Mapping[str, str] = field(default_factory=lambda: dict(UPSTREAM_HEADERS))
    debug_sse_enabled: bool = False
    debug_sse_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProxySettings":
        """Read settings from the process environment, falling back to defaults."""

        return cls(
            host=os.getenv("HOST", DEFAULT_HOST),
            port=_int_env("PORT", DEFAULT_PORT),
            api_key=os.getenv("API_KEY", DEFAULT_API_KEY),
            upstream_url=os.getenv("UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
            default_model=os.getenv("DEFAULT_MODEL") or DEFAULT_MODEL,
            upstream_timeout=_timeout_env("UPSTREAM_TIMEOUT"),
            debug_sse_enabled=_bool_env("DEBUG_SSE", False),
            debug_sse_path=os.getenv("DEBUG_SSE_PATH") or None,
        )
