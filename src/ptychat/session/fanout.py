"""Event fanout — routes session output to subscribed transports.

The registry publishes every session event here. Transport connections
subscribe to one session at a time and receive that session's ``data`` and
``exit`` events; lifecycle watchers (the WebSocket endpoint, tests) receive
the event types they ask for through an asyncio queue.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

from ptychat.session.models import LogEntry

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    LOGS = "logs"
    DATA = "data"
    EXIT = "exit"
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    DELETED = "deleted"
    ERROR = "error"


# Events routed to a session's subscribers (LOGS is delivered directly on
# subscribe, never broadcast).
SESSION_EVENTS = frozenset({EventType.DATA, EventType.EXIT})

# Events about the session list itself.
LIFECYCLE_EVENTS = frozenset(
    {
        EventType.CREATED,
        EventType.STARTED,
        EventType.STOPPED,
        EventType.DELETED,
        EventType.ERROR,
    }
)


@dataclass
class FanoutEvent:
    """An event about one session."""

    type: EventType
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)


class Subscriber(Protocol):
    """Anything that can receive session events.

    ``deliver`` must not block. Raising marks the subscriber as dead and
    removes it from the routing table.
    """

    def deliver(self, event: FanoutEvent) -> None: ...


class Fanout:
    """Routing table: session id -> subscribers.

    Each subscriber follows at most one session; subscribing again moves it.
    Broadcast, not load-balanced: every subscriber of a session gets every
    event.
    """

    def __init__(self) -> None:
        self._routes: dict[str, list[Subscriber]] = {}
        self._current: dict[int, tuple[Subscriber, str]] = {}
        self._watchers: list[
            tuple[asyncio.Queue[FanoutEvent | None], frozenset[EventType] | None]
        ] = []
        self._closed: bool = False

    # -- subscriptions -----------------------------------------------------

    def subscribe(
        self,
        subscriber: Subscriber,
        session_id: str,
        history: list[LogEntry] | None = None,
    ) -> bool:
        """Route ``session_id`` events to ``subscriber``.

        Any previous subscription is dropped first. The subscriber
        synchronously receives a LOGS event carrying ``history`` before any
        live event. Returns False if delivering the history failed (the
        subscriber is then not routed).
        """
        self.unsubscribe(subscriber)
        replay = FanoutEvent(
            type=EventType.LOGS,
            session_id=session_id,
            data={"logs": list(history or [])},
        )
        try:
            subscriber.deliver(replay)
        except Exception as e:
            logger.warning("Subscriber failed on replay for %s: %s", session_id, e)
            return False

        self._routes.setdefault(session_id, []).append(subscriber)
        self._current[id(subscriber)] = (subscriber, session_id)
        logger.debug("Subscriber attached to session %s", session_id)
        return True

    def unsubscribe(self, subscriber: Subscriber) -> str | None:
        """Stop routing events to ``subscriber``.

        Safe to call when not subscribed. Returns the session id it was
        following, if any.
        """
        entry = self._current.pop(id(subscriber), None)
        if entry is None:
            return None
        _, session_id = entry
        subscribers = self._routes.get(session_id)
        if subscribers is not None:
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers:
                del self._routes[session_id]
        logger.debug("Subscriber detached from session %s", session_id)
        return session_id

    # Disconnect and unsubscribe do the same bookkeeping.
    remove = unsubscribe

    @contextmanager
    def attached(self, subscriber: Subscriber) -> Iterator[Subscriber]:
        """Guarantee ``subscriber`` is removed however the block exits."""
        try:
            yield subscriber
        finally:
            self.remove(subscriber)

    def current(self, subscriber: Subscriber) -> str | None:
        """The session ``subscriber`` currently follows, if any."""
        entry = self._current.get(id(subscriber))
        return entry[1] if entry else None

    def subscribers(self, session_id: str) -> list[Subscriber]:
        return list(self._routes.get(session_id, []))

    def drop_session(self, session_id: str) -> None:
        """Remove every route for a deleted session."""
        for subscriber in self._routes.pop(session_id, []):
            self._current.pop(id(subscriber), None)

    # -- publishing --------------------------------------------------------

    def publish(self, event: FanoutEvent) -> None:
        """Deliver an event to its session's subscribers and to all watchers.

        Silently drops events after ``close()`` has been called. A subscriber
        that raises is removed; the others still receive the event.
        """
        if self._closed:
            return

        if event.type in SESSION_EVENTS:
            for subscriber in self.subscribers(event.session_id):
                try:
                    subscriber.deliver(event)
                except Exception as e:
                    logger.warning(
                        "Dropping subscriber of session %s after failed send: %s",
                        event.session_id,
                        e,
                    )
                    self.remove(subscriber)

        for q, types in self._watchers:
            if types is None or event.type in types:
                q.put_nowait(event)

    def publish_data(self, session_id: str, data: str, source: str = "stdout") -> None:
        self.publish(
            FanoutEvent(
                type=EventType.DATA,
                session_id=session_id,
                data={"data": data, "type": source},
            )
        )

    def publish_exit(self, session_id: str, exit_code: int | None) -> None:
        self.publish(
            FanoutEvent(
                type=EventType.EXIT,
                session_id=session_id,
                data={"exit_code": exit_code},
            )
        )

    def publish_lifecycle(
        self, event_type: EventType, session_id: str, **data: Any
    ) -> None:
        self.publish(FanoutEvent(type=event_type, session_id=session_id, data=data))

    # -- watchers ----------------------------------------------------------

    def watch(
        self, types: frozenset[EventType] | None = None
    ) -> asyncio.Queue[FanoutEvent | None]:
        """Receive events of the given types (all of them by default).

        Returns a queue to read from; ``None`` on the queue means the fanout
        closed.
        """
        q: asyncio.Queue[FanoutEvent | None] = asyncio.Queue()
        self._watchers.append((q, types))
        return q

    def unwatch(self, q: asyncio.Queue) -> None:
        self._watchers = [w for w in self._watchers if w[0] is not q]

    def close(self) -> None:
        """Signal all watchers that the fanout is closing."""
        if self._closed:
            return
        self._closed = True
        for q, _ in self._watchers:
            q.put_nowait(None)
