"""Sessions — records, the fanout that streams them, and their registry.

``SessionRegistry`` lives in :mod:`ptychat.session.registry`; it is not
re-exported here because it depends on :mod:`ptychat.pty`, which in turn
imports the models below.
"""

from ptychat.session.fanout import EventType, Fanout, FanoutEvent, Subscriber
from ptychat.session.models import (
    LogEntry,
    OpResult,
    SessionRecord,
    SessionStatus,
    SessionView,
)

__all__ = [
    "EventType",
    "Fanout",
    "FanoutEvent",
    "LogEntry",
    "OpResult",
    "SessionRecord",
    "SessionStatus",
    "SessionView",
    "Subscriber",
]
