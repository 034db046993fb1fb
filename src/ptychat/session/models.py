"""Session data model — internal records and their external projections."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ptychat.pty.buffer import LogBuffer
    from ptychat.session.registry import ProcessHandle


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


LogType = Literal["stdout", "stderr", "system"]


class LogEntry(BaseModel):
    """One immutable chunk of session output or an informational note."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    type: LogType = "stdout"
    content: str = ""


class SessionView(BaseModel):
    """What callers outside the registry get to see of a session."""

    id: str
    name: str
    working_dir: str = Field(serialization_alias="workingDir")
    status: SessionStatus
    created_at: datetime = Field(serialization_alias="createdAt")
    log_count: int = Field(default=0, serialization_alias="logCount")


class OpResult(enum.Enum):
    """Outcome of a registry operation.

    Only ``OK`` is truthy, so results read naturally in ``if`` statements
    while still telling "not found" apart from other failures.
    """

    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_RUNNING = "not_running"
    ALREADY_RUNNING = "already_running"
    SPAWN_FAILED = "spawn_failed"

    def __bool__(self) -> bool:
        return self is OpResult.OK


@dataclass
class SessionRecord:
    """Registry-owned session state, including the live process handle.

    The process handle never leaves the registry; use :meth:`view` to hand a
    session to anything else.
    """

    name: str
    working_dir: str
    logs: LogBuffer
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.STOPPED
    created_at: datetime = field(default_factory=utcnow)
    process: ProcessHandle | None = None

    @property
    def running(self) -> bool:
        return (
            self.status == SessionStatus.RUNNING
            and self.process is not None
            and self.process.alive
        )

    def view(self) -> SessionView:
        return SessionView(
            id=self.id,
            name=self.name,
            working_dir=self.working_dir,
            status=self.status,
            created_at=self.created_at,
            log_count=len(self.logs),
        )
