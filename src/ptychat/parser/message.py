"""Reconstructed conversation messages."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ptychat.session.models import utcnow

MessageRole = Literal["user", "assistant", "tool", "system"]


def new_message_id() -> str:
    return uuid.uuid4().hex


class Message(BaseModel):
    """One chat-transcript message rebuilt from terminal output.

    The parser publishes *snapshots*: an assistant message that is still
    accumulating is re-emitted with the same ``id`` and growing ``content``
    until a snapshot with ``is_streaming=False`` closes it.
    """

    id: str = Field(default_factory=new_message_id)
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    tool_name: str | None = Field(default=None, serialization_alias="toolName")
    tool_input: str | None = Field(default=None, serialization_alias="toolInput")
    is_streaming: bool = Field(default=False, serialization_alias="isStreaming")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

