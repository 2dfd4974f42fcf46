"""Shared fixtures: a fake SSE upstream and an httpx client bound to the proxy app."""
from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from dphn_proxy.app import create_app
from dphn_proxy.config import ProxySettings

API_KEY = "test-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}


def sse_line(content: str | None = None, finish_reason: str | None = None) -> bytes:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    frame = {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}
    return f"data: {json.dumps(frame, ensure_ascii=False)}\n\n".encode("utf-8")


class FakeUpstream:
    """Scriptable stand-in for the upstream chat endpoint."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.status = 200
        self.error_body = ""
        self.chunks: list[bytes] = []
        self.abort_after_chunks = False
        self.hang_before_headers = False
        self.hang_after_chunks = False
        self.release = asyncio.Event()

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.calls.append({"json": await request.json(), "headers": request.headers.copy()})
        if self.hang_before_headers:
            await self.release.wait()
        if self.status != 200:
            return web.Response(status=self.status, text=self.error_body)

        resp = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        for chunk in self.chunks:
            await resp.write(chunk)
        if self.abort_after_chunks:
            # let the proxy read what was sent before the connection drops
            await asyncio.sleep(0.05)
            request.transport.close()
            return resp
        if self.hang_after_chunks:
            await self.release.wait()
            return resp
        await resp.write_eof()
        return resp


@pytest.fixture
async def upstream():
    fake = FakeUpstream()
    app = web.Application()
    app.router.add_post("/api/chat", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/api/chat"))
    try:
        yield fake
    finally:
        fake.release.set()
        await server.close()


def make_settings(upstream_url: str, **overrides: Any) -> ProxySettings:
    return ProxySettings(upstream_url=upstream_url, api_key=API_KEY, **overrides)


@pytest.fixture
async def proxy(upstream):
    app = create_app(make_settings(upstream.url))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://proxy") as client:
        yield client
