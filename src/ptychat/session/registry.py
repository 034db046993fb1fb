"""Session registry — owns every session and its PTY process."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from ptychat.config import SessionConfig
from ptychat.pty.buffer import LogBuffer
from ptychat.pty.process import OnData, OnExit, PTYProcess, SpawnError
from ptychat.session.fanout import EventType, Fanout, Subscriber
from ptychat.session.models import (
    LogEntry,
    OpResult,
    SessionRecord,
    SessionStatus,
    SessionView,
)

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """What the registry needs from a running child."""

    def write(self, data: str | bytes) -> bool: ...

    def resize(self, cols: int, rows: int) -> bool: ...

    def kill(self) -> None: ...

    @property
    def alive(self) -> bool: ...


class Spawner(Protocol):
    def __call__(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str,
        cols: int,
        rows: int,
        env: dict[str, str] | None,
        on_data: OnData | None,
        on_exit: OnExit | None,
    ) -> ProcessHandle: ...


# Process callbacks become commands, handled one at a time.


@dataclass
class OutputReceived:
    session_id: str
    process: ProcessHandle
    data: str


@dataclass
class ProcessExited:
    session_id: str
    process: ProcessHandle
    exit_code: int | None


Command = OutputReceived | ProcessExited


class SessionRegistry:
    """In-memory collection of sessions.

    The registry ensures:
    - Sessions are tracked and can be looked up by ID
    - Process handles never leave the registry (callers get SessionView)
    - Every operation on an unknown ID returns ``OpResult.NOT_FOUND``
      instead of raising
    - Output and exit notifications go through the Fanout
    - All processes are killed on shutdown (no orphans)
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        fanout: Fanout | None = None,
        spawner: Spawner | None = None,
    ) -> None:
        self._config = config or SessionConfig()
        self._fanout = fanout or Fanout()
        self._spawn: Spawner = spawner or PTYProcess.spawn
        self._sessions: dict[str, SessionRecord] = {}
        self._inbox: deque[Command] = deque()
        self._draining = False

    @property
    def fanout(self) -> Fanout:
        return self._fanout

    @property
    def config(self) -> SessionConfig:
        return self._config

    # -- queries -----------------------------------------------------------

    def get(self, session_id: str) -> SessionView | None:
        record = self._sessions.get(session_id)
        return record.view() if record else None

    def list_sessions(self) -> list[SessionView]:
        return [record.view() for record in self._sessions.values()]

    def get_logs(self, session_id: str, limit: int | None = None) -> list[LogEntry] | None:
        """Most recent ``limit`` log entries in append order (all if None).

        Returns None when the session does not exist.
        """
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return record.logs.read_tail(limit)

    # -- lifecycle ---------------------------------------------------------

    def create(self, name: str | None, working_dir: str) -> SessionView:
        record = SessionRecord(
            name=name or f"Session {len(self._sessions) + 1}",
            working_dir=working_dir,
            logs=LogBuffer(self._config.max_log_entries),
        )
        self._sessions[record.id] = record
        logger.info("Session %s created (%s) in %s", record.id, record.name, working_dir)
        self._fanout.publish_lifecycle(EventType.CREATED, record.id, name=record.name)
        return record.view()

    def update(
        self,
        session_id: str,
        name: str | None = None,
        working_dir: str | None = None,
    ) -> OpResult:
        """Correct a session's name or working directory.

        A new working directory takes effect on the next ``start``.
        """
        record = self._sessions.get(session_id)
        if record is None:
            return OpResult.NOT_FOUND
        if name:
            record.name = name
        if working_dir:
            record.working_dir = working_dir
        return OpResult.OK

    def start(self, session_id: str) -> OpResult:
        """Spawn the configured command for a session.

        Spawn failures leave the session in the registry with status
        ``error``; ``start`` can be called again.
        """
        record = self._sessions.get(session_id)
        if record is None:
            return OpResult.NOT_FOUND
        if record.running:
            return OpResult.ALREADY_RUNNING

        # Bind the callbacks to this exact process so late events from a
        # previous run can be told apart.
        holder: list[ProcessHandle] = []

        def _on_data(data: str) -> None:
            if holder:
                self._post(OutputReceived(session_id, holder[0], data))

        def _on_exit(exit_code: int | None) -> None:
            if holder:
                self._post(ProcessExited(session_id, holder[0], exit_code))

        cfg = self._config
        try:
            process = self._spawn(
                cfg.command,
                list(cfg.args),
                cwd=record.working_dir,
                cols=cfg.cols,
                rows=cfg.rows,
                env={"TERM": cfg.term, "COLORTERM": "truecolor"},
                on_data=_on_data,
                on_exit=_on_exit,
            )
        except SpawnError as e:
            record.status = SessionStatus.ERROR
            record.process = None
            record.logs.append(LogEntry(type="system", content=f"Failed to start: {e}"))
            logger.warning("Session %s failed to start: %s", session_id, e)
            self._fanout.publish_lifecycle(EventType.ERROR, session_id, error=str(e))
            return OpResult.SPAWN_FAILED

        holder.append(process)
        record.process = process
        record.status = SessionStatus.RUNNING
        logger.info("Session %s started", session_id)
        self._fanout.publish_lifecycle(EventType.STARTED, session_id)
        return OpResult.OK

    def send_input(self, session_id: str, data: str | bytes) -> OpResult:
        record = self._sessions.get(session_id)
        if record is None:
            return OpResult.NOT_FOUND
        if not record.running or not record.process.write(data):
            return OpResult.NOT_RUNNING
        return OpResult.OK

    def resize(self, session_id: str, cols: int, rows: int) -> OpResult:
        record = self._sessions.get(session_id)
        if record is None:
            return OpResult.NOT_FOUND
        if not record.running or not record.process.resize(cols, rows):
            return OpResult.NOT_RUNNING
        return OpResult.OK

    def stop(self, session_id: str) -> OpResult:
        """Force-kill a session's process. Stopping twice is a no-op."""
        record = self._sessions.get(session_id)
        if record is None:
            return OpResult.NOT_FOUND
        if not record.running:
            return OpResult.NOT_RUNNING

        record.process.kill()
        record.status = SessionStatus.STOPPED
        logger.info("Session %s stopped", session_id)
        self._fanout.publish_lifecycle(EventType.STOPPED, session_id)
        return OpResult.OK

    def delete(self, session_id: str) -> OpResult:
        """Kill any live process and forget the session entirely."""
        record = self._sessions.pop(session_id, None)
        if record is None:
            return OpResult.NOT_FOUND

        if record.process is not None:
            record.process.kill()
            record.process = None
        self._fanout.drop_session(session_id)
        logger.info("Session %s deleted", session_id)
        self._fanout.publish_lifecycle(EventType.DELETED, session_id)
        return OpResult.OK

    def subscribe(
        self,
        subscriber: Subscriber,
        session_id: str,
        replay: int | None = None,
    ) -> OpResult:
        """Follow a session, replaying its most recent log entries first."""
        if session_id not in self._sessions:
            return OpResult.NOT_FOUND
        limit = self._config.replay_limit if replay is None else replay
        history = self.get_logs(session_id, limit) or []
        self._fanout.subscribe(subscriber, session_id, history)
        return OpResult.OK

    def shutdown(self) -> None:
        """Kill all live processes. Called on server shutdown."""
        for session_id, record in list(self._sessions.items()):
            if record.running:
                self.stop(session_id)
        logger.info("All sessions stopped")

    # -- process events ----------------------------------------------------

    def _post(self, command: Command) -> None:
        self._inbox.append(command)
        if self._draining:
            # Handled by the drain loop already on the stack
            return
        self._draining = True
        try:
            while self._inbox:
                self._handle(self._inbox.popleft())
        finally:
            self._draining = False

    def _handle(self, command: Command) -> None:
        try:
            if isinstance(command, OutputReceived):
                self._on_output(command)
            elif isinstance(command, ProcessExited):
                self._on_exit(command)
        except Exception:
            logger.exception(
                "Error handling %s for session %s",
                type(command).__name__,
                command.session_id,
            )

    def _on_output(self, command: OutputReceived) -> None:
        record = self._sessions.get(command.session_id)
        if record is None or record.process is not command.process:
            return
        record.logs.append(LogEntry(type="stdout", content=command.data))
        self._fanout.publish_data(command.session_id, command.data, "stdout")

    def _on_exit(self, command: ProcessExited) -> None:
        record = self._sessions.get(command.session_id)
        if record is None or record.process is not command.process:
            logger.debug("Ignoring exit of stale process for %s", command.session_id)
            return

        record.process = None
        if record.status == SessionStatus.RUNNING:
            record.status = SessionStatus.STOPPED
        record.logs.append(
            LogEntry(type="system", content=f"Process exited with code {command.exit_code}")
        )
        logger.info("Session %s process exited (code=%s)", command.session_id, command.exit_code)
        self._fanout.publish_exit(command.session_id, command.exit_code)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
