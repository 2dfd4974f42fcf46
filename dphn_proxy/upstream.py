"""Single best-effort forward of a normalized chat request to the upstream."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import aiohttp

from .config import ProxySettings
from .schemas import NormalizedRequest

logger = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """Raised when the upstream answers with a non-2xx status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Upstream returned HTTP {status}")
        self.status = status
        self.body = body


def build_upstream_payload(request: NormalizedRequest) -> dict[str, Any]:
    return {
        "messages": [m.model_dump() for m in request.messages],
        "model": request.model,
        "template": request.template,
    }


def _client_timeout(settings: ProxySettings) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=settings.upstream_timeout, sock_read=None)


@asynccontextmanager
async def _upstream_request(
    client: Optional[aiohttp.ClientSession],
    settings: ProxySettings,
    payload: dict,
) -> AsyncIterator[aiohttp.ClientResponse]:
    headers = dict(settings.upstream_headers)
    if client is None:
        async with aiohttp.ClientSession(timeout=_client_timeout(settings)) as session:
            async with session.post(settings.upstream_url, json=payload, headers=headers) as response:
                yield response
    else:
        async with client.post(
            settings.upstream_url,
            json=payload,
            headers=headers,
            timeout=_client_timeout(settings),
        ) as response:
            yield response


@asynccontextmanager
async def open_upstream_stream(
    client: Optional[aiohttp.ClientSession],
    settings: ProxySettings,
    request: NormalizedRequest,
) -> AsyncIterator[aiohttp.ClientResponse]:
    """Open the upstream SSE response for ``request``.

    Yields the live response with its body unread. A non-2xx answer is read
    in full and raised as :class:`UpstreamError`. Transport failures
    (``aiohttp.ClientError``, ``asyncio.TimeoutError``) propagate unchanged;
    nothing is retried. The connection is released when the context exits.
    """

    payload = build_upstream_payload(request)
    async with _upstream_request(client, settings, payload) as response:
        if not 200 <= response.status < 300:
            body = await response.text(errors="replace")
            logger.error("[Upstream Error %s] %s", response.status, body[:2000])
            raise UpstreamError(response.status, body)
        yield response


async def iter_upstream_chunks(response: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
    """Yield body chunks as they arrive, in arrival order."""
    async for chunk in response.content.iter_any():
        if chunk:
            yield chunk
