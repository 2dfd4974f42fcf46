"""Fold system-role messages into user turns.

The upstream chat service has no system role, so every system message is
merged into the nearest following user message, or appended as a trailing
user message when nothing follows it.
"""
from __future__ import annotations

import json
from typing import Any

from .schemas import ChatMessage

SYSTEM_SEPARATOR = "\n\n"


def _flatten_content(c: Any) -> str:
    if isinstance(c, str):
        return c
    if c is None:
        return ""
    if isinstance(c, list):
        parts: list[str] = []
        for item in c:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
            else:
                parts.append(json.dumps(item, separators=(",", ":")))
        return " ".join(parts)
    return json.dumps(c, separators=(",", ":"))


def normalize_messages(messages: Any) -> list[ChatMessage]:
    if not isinstance(messages, list):
        return []

    out: list[ChatMessage] = []
    system_buf = ""

    for m in messages:
        if isinstance(m, ChatMessage):
            msg = m
        elif isinstance(m, dict) and isinstance(m.get("role"), str):
            msg = ChatMessage.model_validate(m)
        else:
            continue

        if msg.role == "system":
            system_buf += _flatten_content(msg.content) + SYSTEM_SEPARATOR
            continue

        if msg.role == "user" and system_buf:
            merged = msg.model_copy(update={"content": system_buf + _flatten_content(msg.content)})
            out.append(merged)
            system_buf = ""
            continue

        out.append(msg)

    if system_buf:
        out.append(ChatMessage(role="user", content=system_buf.strip()))
    return out
