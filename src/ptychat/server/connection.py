"""Per-client transport state.

A :class:`ClientConnection` is the fanout subscriber for one WebSocket. It
follows at most one session, turns fanout events into outbound frames, and
runs its own :class:`~ptychat.parser.reconstructor.OutputParser` so every
client gets a chat transcript alongside the raw terminal stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ptychat.parser.message import Message
from ptychat.parser.reconstructor import OutputParser
from ptychat.server.protocol import (
    InputFrame,
    ProtocolError,
    ResizeFrame,
    SubscribeFrame,
    UnsubscribeFrame,
    data_frame,
    error_frame,
    exit_frame,
    logs_frame,
    message_frame,
    parse_client_frame,
    session_event_frame,
)
from ptychat.session.fanout import EventType, FanoutEvent
from ptychat.session.models import OpResult
from ptychat.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

Frame = dict[str, Any]


class ConnectionClosed(Exception):
    """The client is gone or too far behind to keep."""


class ClientConnection:
    def __init__(self, registry: SessionRegistry, queue_size: int = 1024) -> None:
        self._registry = registry
        self._fanout = registry.fanout
        self.outbox: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=queue_size)
        self.parser = OutputParser()
        self.closed = asyncio.Event()
        self.overflowed = False

    @property
    def session_id(self) -> str | None:
        return self._fanout.current(self)

    # -- fanout side ---------------------------------------------------------

    def deliver(self, event: FanoutEvent) -> None:
        if self.closed.is_set():
            raise ConnectionClosed("connection closed")

        if event.type is EventType.LOGS:
            entries = event.data.get("logs", [])
            self._send(logs_frame(entries))
            for entry in entries:
                if entry.type == "system":
                    self._send_messages(self.parser.close_with(entry.content))
                else:
                    self._send_messages(self.parser.feed(entry.content))
        elif event.type is EventType.DATA:
            data = event.data.get("data", "")
            self._send(data_frame(data, event.data.get("type", "stdout")))
            self._send_messages(self.parser.feed(data))
        elif event.type is EventType.EXIT:
            exit_code = event.data.get("exit_code")
            self._send(exit_frame(exit_code))
            self._send_messages(self.parser.handle_exit(exit_code))

    def _send(self, frame: Frame) -> None:
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Client outbox full, disconnecting")
            self._overflow()
            raise ConnectionClosed("outbox full") from None

    def _send_messages(self, messages: list[Message]) -> None:
        for message in messages:
            self._send(message_frame(message))

    def _overflow(self) -> None:
        # Queued frames are stale now; make room for the stop marker.
        self.overflowed = True
        self.closed.set()
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)

    def notify(self, event: FanoutEvent) -> None:
        """Tell the client about a change to the session list."""
        if self.closed.is_set():
            return
        try:
            self._send(
                session_event_frame(event.type.value, event.session_id, event.data)
            )
        except ConnectionClosed:
            pass

    # -- client side ---------------------------------------------------------

    def handle(self, raw: str | bytes | Frame) -> None:
        """Apply one frame received from the client."""
        try:
            frame = parse_client_frame(raw)
        except ProtocolError as e:
            self._reply_error(str(e))
            return

        if isinstance(frame, SubscribeFrame):
            self._subscribe(frame.session_id)
        elif isinstance(frame, UnsubscribeFrame):
            self._fanout.unsubscribe(self)
            self.parser.reset()
        elif isinstance(frame, InputFrame):
            self._input(frame.data)
        elif isinstance(frame, ResizeFrame):
            self._resize(frame.cols, frame.rows)

    def _subscribe(self, session_id: str) -> None:
        # Parser state belongs to one subscription; replay rebuilds it.
        self.parser.reset()
        result = self._registry.subscribe(self, session_id)
        if result is OpResult.NOT_FOUND:
            self._fanout.unsubscribe(self)
            self._reply_error(f"Session not found: {session_id}")

    def _input(self, data: str) -> None:
        session_id = self.session_id
        if session_id is None:
            self._reply_error("Not subscribed to a session")
            return
        result = self._registry.send_input(session_id, data)
        if not result:
            self._reply_error(f"Input not delivered: {result.value}")
            return
        # Only input that reached the terminal shows up as a user turn.
        self._send_messages(self.parser.begin_turn(data))

    def _resize(self, cols: int, rows: int) -> None:
        session_id = self.session_id
        if session_id is None:
            return
        result = self._registry.resize(session_id, cols, rows)
        if not result:
            logger.debug("Resize of %s ignored: %s", session_id, result.value)

    def _reply_error(self, error: str) -> None:
        try:
            self._send(error_frame(error))
        except ConnectionClosed:
            pass

    # -- lifecycle -----------------------------------------------------------

    async def pump(self, send: Callable[[Frame], Awaitable[None]]) -> None:
        """Forward queued frames to the client until closed."""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                break
            await send(frame)

    def close(self) -> None:
        """Detach from the fanout. Safe to call more than once."""
        self.closed.set()
        self._fanout.remove(self)
        try:
            self.outbox.put_nowait(None)
        except asyncio.QueueFull:
            pass
