"""WebSocket frames exchanged with clients (JSON objects with a ``type``)."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ptychat.parser.message import Message
from ptychat.session.models import LogEntry


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubscribeFrame(_Frame):
    type: Literal["subscribe"]
    session_id: str = Field(alias="sessionId")


class UnsubscribeFrame(_Frame):
    type: Literal["unsubscribe"]


class InputFrame(_Frame):
    type: Literal["input"]
    data: str


class ResizeFrame(_Frame):
    type: Literal["resize"]
    cols: int = Field(gt=0)
    rows: int = Field(gt=0)


ClientFrame = Annotated[
    Union[SubscribeFrame, UnsubscribeFrame, InputFrame, ResizeFrame],
    Field(discriminator="type"),
]

_client_frame = TypeAdapter(ClientFrame)


class ProtocolError(ValueError):
    """A client sent something that is not a valid frame."""


def parse_client_frame(raw: str | bytes | dict[str, Any]) -> ClientFrame:
    try:
        if isinstance(raw, dict):
            return _client_frame.validate_python(raw)
        return _client_frame.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ())) or "frame"
    return f"Invalid frame ({where}): {first.get('msg', 'invalid')}"


# -- server -> client ---------------------------------------------------------


def logs_frame(entries: list[LogEntry]) -> dict[str, Any]:
    return {"type": "logs", "logs": [e.model_dump(mode="json") for e in entries]}


def data_frame(data: str, source: str = "stdout") -> dict[str, Any]:
    return {"type": "data", "data": data, "dataType": source}


def exit_frame(exit_code: int | None) -> dict[str, Any]:
    return {"type": "exit", "exitCode": exit_code}


def message_frame(message: Message) -> dict[str, Any]:
    return {"type": "message", "message": message.to_wire()}


def error_frame(error: str) -> dict[str, Any]:
    return {"type": "error", "error": error}


def session_event_frame(
    event: str, session_id: str, data: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {"type": "session", "event": event, "sessionId": session_id, **(data or {})}
