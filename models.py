"""Pydantic models for research documents, outlines, artifacts and templates."""
from __future__ import annotations

import base64
from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

ArtifactMime = Literal["image/svg+xml", "text/html", "text/plain"]
BlockKind = Literal["plot", "table", "generic"]


def _now() -> datetime:
    return datetime.now()


class ResearchDocument(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    topic: str = ""
    raw_text: str = ""
    is_complete: bool = False
    created_at: datetime = Field(default_factory=_now)

    def append(self, chunk: str) -> None:
        if self.is_complete:
            raise ValueError("Research document is complete and can no longer change")
        self.raw_text += chunk

    def mark_complete(self, final_text: Optional[str] = None) -> None:
        if self.is_complete:
            return
        if final_text is not None:
            self.raw_text = final_text
        self.is_complete = True


class Outline(BaseModel):
    source_document_id: str
    normalized_text: str
    slide_breaks: List[int] = Field(default_factory=list)
    format: Literal["markdown"] = "markdown"
    is_complete: bool = True
    created_at: datetime = Field(default_factory=_now)


class CodeBlock(BaseModel):
    language: Literal["statistical", "other"]
    raw_source: str
    info: str = ""
    kind: Optional[BlockKind] = None
    start: int
    end: int

    @property
    def position_in_outline(self) -> int:
        return self.start


class Artifact(BaseModel):
    content_hash: str
    mime_type: ArtifactMime
    payload: bytes
    size_bytes: int = 0
    created_at: datetime = Field(default_factory=_now)

    def model_post_init(self, __context) -> None:
        if not self.size_bytes:
            self.size_bytes = len(self.payload)

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    def data_url(self) -> str:
        b64 = base64.b64encode(self.payload).decode("ascii")
        return f"data:{self.mime_type};base64,{b64}"


class Template(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    theme: str
    background_color: str
    text_color: str
    accent_color: str
    heading_font: str
    body_font: str


class ResearchResult(BaseModel):
    topic: str
    subtopics: List[str] = Field(default_factory=list)
    content: str
    timestamp: str


class OutlineRecord(BaseModel):
    content: str
    format: Literal["markdown"] = "markdown"
    timestamp: str


# Boundary shapes for the chat-completion service.


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletion(BaseModel):
    choices: List[ChatChoice] = Field(min_length=1)

    @property
    def content(self) -> str:
        return self.choices[0].message.content or ""


class StreamDelta(BaseModel):
    content: Optional[str] = None


class StreamChoice(BaseModel):
    delta: StreamDelta = Field(default_factory=StreamDelta)


class StreamChunk(BaseModel):
    choices: List[StreamChoice] = Field(default_factory=list)

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].delta.content or ""
