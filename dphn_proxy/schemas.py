"""Pydantic models for the client-facing API and the upstream wire format."""
from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

UPSTREAM_TEMPLATE = "logical"


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)
    role: str
    content: Any = None


class ChatCompletionsRequest(BaseModel):
    model_config = ConfigDict(extra="allow")
    # Any shape; normalize_messages() turns non-lists into [].
    messages: Any = None
    model: Optional[str] = None
    stream: Optional[bool] = None


class NormalizedRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    model: str
    template: Literal["logical"] = UPSTREAM_TEMPLATE


# ---------- Upstream SSE frames ----------

class FrameDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")
    content: Optional[str] = None


class FrameChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")
    delta: Optional[FrameDelta] = None
    finish_reason: Optional[str] = None


class UpstreamFrame(BaseModel):
    """One decoded ``data:`` payload from the upstream stream."""

    model_config = ConfigDict(extra="ignore")
    choices: List[FrameChoice] = Field(default_factory=list)

    @property
    def delta_content(self) -> Optional[str]:
        if not self.choices or self.choices[0].delta is None:
            return None
        return self.choices[0].delta.content

    @property
    def finish_reason(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].finish_reason


# ---------- Client responses ----------

class ChatResponseMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class Choice(BaseModel):
    index: int
    message: ChatResponseMessage
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionsResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Field(default_factory=Usage)


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelsList(BaseModel):
    object: str = "list"
    data: List[ModelCard]
