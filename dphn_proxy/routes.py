"""HTTP route handlers for the DPHN OpenAI-compatible proxy.

Requests are normalized, forwarded once to the upstream, and answered either
by piping the upstream SSE bytes straight through (``stream=true``) or by
draining the stream and returning a single chat.completion document.
"""
from __future__ import annotations

import asyncio
import hmac
import json
import logging
import time
import uuid
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Callable, Optional, Union

import aiohttp
from aiohttp import ClientError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from .config import AVAILABLE_MODELS, ProxySettings
from .normalize import normalize_messages
from .schemas import (
    ChatCompletionsRequest,
    ChatCompletionsResponse,
    ChatResponseMessage,
    Choice,
    ModelsList,
    NormalizedRequest,
)
from .sse import AccumulatedResult, ContentAccumulator, SSEDecoder, iter_sse_frames
from .upstream import UpstreamError, iter_upstream_chunks, open_upstream_stream

logger = logging.getLogger(__name__)
router = APIRouter()

MODELS_PAYLOAD = ModelsList(data=AVAILABLE_MODELS)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class AuthError(Exception):
    """Raised by :func:`require_api_key` when the bearer token is missing or wrong."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _coerce_json_object_from_bytes(raw: bytes) -> dict[str, Any]:
    """Parse request body bytes into a JSON object.

    Raises:
        ValueError: If the body is empty or not valid JSON
        TypeError: If the parsed result is not a JSON object
    """
    if not raw or raw.strip() == b"":
        raise ValueError("Empty request body")
    first = json.loads(raw.decode("utf-8", errors="replace"))
    if not isinstance(first, dict):
        raise TypeError("Request body must be a JSON object")
    return first


def _settings(request: Request) -> ProxySettings:
    return request.app.state.settings


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def require_api_key(request: Request) -> None:
    expected = _settings(request).api_key
    provided = _extract_bearer_token(request)
    if not provided:
        raise AuthError("Missing API key")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthError("Invalid API key")


def _make_debugger(request: Request) -> Optional[Callable[[str], None]]:
    """Compose a debug writer honoring application settings with per-request overrides."""

    settings = _settings(request)
    enabled = settings.debug_sse_enabled
    path = (settings.debug_sse_path or "").strip()

    # enable order: app default → query param → header
    for value in (
        request.query_params.get("debug_sse") or request.query_params.get("debug"),
        request.headers.get("x-debug-sse"),
    ):
        if not isinstance(value, str):
            continue
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            enabled = True
        if v in {"0", "false", "no", "off"}:
            enabled = False
    if not enabled:
        return None

    if path:
        def writer(line: str) -> None:
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(f"[{time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime())} UTC] {line}\n")
            except OSError as e:
                logger.debug("debug write failed: %s", e)
        return writer

    def writer_log(line: str) -> None:
        logger.debug("%s", line)

    return writer_log


def _internal_error(exc: BaseException) -> JSONResponse:
    message = str(exc) or exc.__class__.__name__
    return JSONResponse(status_code=500, content={"error": {"message": message}})


def _upstream_error_response(exc: UpstreamError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={"error": "Upstream error", "details": exc.body, "code": exc.status},
    )


# ---------- Routes ----------

@router.get("/")
async def root() -> PlainTextResponse:
    return PlainTextResponse("DPHN OpenAI Proxy is running.")


@router.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "service": "dphn-openai-proxy"})


@router.get("/v1/models", dependencies=[Depends(require_api_key)])
async def models() -> JSONResponse:
    return JSONResponse(content=MODELS_PAYLOAD.model_dump())


@router.post("/v1/chat/completions", response_model=None, dependencies=[Depends(require_api_key)])
async def chat_completions(request: Request) -> Union[JSONResponse, StreamingResponse]:
    settings = _settings(request)
    try:
        payload = ChatCompletionsRequest(**_coerce_json_object_from_bytes(await request.body()))
    except (TypeError, ValueError, RecursionError) as e:
        logger.error("[Internal Error] invalid request body: %s", e)
        return _internal_error(e)

    model = payload.model or settings.default_model
    logger.info("[Request] Model: %s stream=%s", model, bool(payload.stream))

    normalized = NormalizedRequest(messages=normalize_messages(payload.messages), model=model)
    debug_cb = _make_debugger(request)
    client = getattr(request.app.state, "http_client", None)

    stack = AsyncExitStack()
    try:
        response = await stack.enter_async_context(open_upstream_stream(client, settings, normalized))
    except UpstreamError as exc:
        await stack.aclose()
        return _upstream_error_response(exc)
    except (asyncio.TimeoutError, ClientError) as exc:
        await stack.aclose()
        logger.error("[Internal Error] upstream request failed: %r", exc)
        return _internal_error(exc)

    if debug_cb:
        debug_cb(f"upstream status: {response.status}")

    if payload.stream:
        return StreamingResponse(
            _passthrough(response, stack, debug_cb),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
            background=BackgroundTask(stack.aclose),
        )

    try:
        result = await _accumulate(response, debug_cb)
    finally:
        await stack.aclose()
    resp = _make_chat_response(model, result)
    return JSONResponse(content=resp.model_dump())


# ---------- Stream consumers ----------

async def _passthrough(
    response: aiohttp.ClientResponse,
    stack: AsyncExitStack,
    debug: Optional[Callable[[str], None]],
) -> AsyncIterator[bytes]:
    """Forward upstream bytes unchanged; release the upstream on every exit."""
    decoder = SSEDecoder(debug) if debug else None
    try:
        async for chunk in iter_upstream_chunks(response):
            if decoder is not None:
                for frame in decoder.feed(chunk):
                    debug(f"frame: delta={frame.delta_content!r} finish={frame.finish_reason!r}")
            yield chunk
    except (asyncio.TimeoutError, ClientError) as exc:
        logger.warning("Upstream stream interrupted during pass-through: %r", exc)
    finally:
        await stack.aclose()


async def _accumulate(
    response: aiohttp.ClientResponse,
    debug: Optional[Callable[[str], None]],
) -> AccumulatedResult:
    accumulator = ContentAccumulator()
    try:
        async for frame in iter_sse_frames(iter_upstream_chunks(response), debug):
            accumulator.feed(frame)
    except (asyncio.TimeoutError, ClientError) as exc:
        logger.warning(
            "Upstream stream interrupted after %d frames, returning partial content: %r",
            accumulator.frames_seen,
            exc,
        )
    return accumulator.result()


# ---------- Response builders ----------

def _make_chat_response(model: str, result: AccumulatedResult) -> ChatCompletionsResponse:
    return ChatCompletionsResponse(
        id=f"chatcmpl-{uuid.uuid4()}",
        object="chat.completion",
        created=int(time.time()),
        model=model,
        choices=[
            Choice(
                index=0,
                message=ChatResponseMessage(role="assistant", content=result.content),
                finish_reason=result.finish_reason,
            )
        ],
    )
