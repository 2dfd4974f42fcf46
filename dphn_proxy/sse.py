"""Incremental SSE decoding and delta accumulation for upstream streams."""
from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from pydantic import ValidationError

from .schemas import UpstreamFrame

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
MAX_PENDING_CHARS = 2 * 1024 * 1024


class SSEDecoder:
    """Turn arbitrarily split byte chunks into parsed ``data:`` frames.

    A partial line (or a UTF-8 sequence cut in half) is held back until the
    next chunk completes it. Whatever is still pending when the stream ends
    is dropped by simply not calling :meth:`feed` again.
    """

    def __init__(
        self,
        debug: Optional[Callable[[str], None]] = None,
        *,
        max_pending_chars: int = MAX_PENDING_CHARS,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._debug = debug
        self._max_pending_chars = max_pending_chars

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes) -> list[UpstreamFrame]:
        if not chunk:
            return []
        text = self._pending + self._decoder.decode(chunk)
        *lines, self._pending = text.split("\n")
        if len(self._pending) > self._max_pending_chars:
            # Safeguard against runaways when upstream omits newlines.
            logger.debug("Dropping %d chars of SSE data without a newline", len(self._pending))
            self._pending = ""

        frames: list[UpstreamFrame] = []
        for raw in lines:
            frame = self._parse_line(raw)
            if frame is not None:
                frames.append(frame)
        return frames

    def _parse_line(self, raw: str) -> Optional[UpstreamFrame]:
        line = raw.strip()
        if not line:
            return None
        if self._debug:
            self._debug(f"raw: {line[:500]}")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            if self._debug:
                self._debug("event: [DONE]")
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE payload: %s", payload[:200])
            return None
        if not isinstance(data, dict):
            return None
        try:
            return UpstreamFrame.model_validate(data)
        except ValidationError:
            logger.debug("Skipping SSE payload with unexpected shape: %s", payload[:200])
            return None


async def iter_sse_frames(
    chunks: AsyncIterable[bytes],
    debug: Optional[Callable[[str], None]] = None,
) -> AsyncIterator[UpstreamFrame]:
    decoder = SSEDecoder(debug)
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    if decoder.pending.strip():
        logger.debug("Discarding %d bytes of unterminated SSE data", len(decoder.pending))


# ---------- Accumulation ----------

@dataclass(frozen=True)
class AccumulatedResult:
    content: str
    finish_reason: str


class ContentAccumulator:
    """Fold streamed deltas into a single message."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._finish_reason = "stop"
        self.frames_seen = 0

    def feed(self, frame: UpstreamFrame) -> None:
        self.frames_seen += 1
        delta = frame.delta_content
        if delta:
            self._parts.append(delta)
        if frame.finish_reason is not None:
            self._finish_reason = frame.finish_reason

    def result(self) -> AccumulatedResult:
        content = "".join(self._parts)
        if self.frames_seen and not content:
            logger.warning(
                "Upstream sent %d frames without any choices[0].delta.content; "
                "its stream format may have changed",
                self.frames_seen,
            )
        return AccumulatedResult(content=content, finish_reason=self._finish_reason)
