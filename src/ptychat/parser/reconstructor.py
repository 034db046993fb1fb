"""Output parser — rebuilds a chat transcript from raw terminal output.

The assistant CLI gives us no structured protocol, only a stream of bytes
with ANSI codes, echoed input, spinner redraws and tool announcements mixed
into its prose. :class:`OutputParser` is the per-subscription state machine
that turns that stream into :class:`~ptychat.parser.message.Message`
snapshots:

* ``raw`` lines open an assistant message (``is_streaming=True``) or are
  appended to the open one, each append republishing the grown content
* a ``user`` echo or a ``tool`` line *flushes* the open message: a final
  snapshot with ``is_streaming=False`` is emitted and the state resets
* ``tool`` lines then become one complete tool message each
* ``system`` lines are standalone and leave the open message alone

Only prose waits for its line break; a trailing fragment that already reads
as a tool, user or system line is handled straight away.

User messages are never produced from echoed output. The side that sends
input creates them up front via :meth:`OutputParser.begin_turn`; the echo
only marks the turn boundary.
"""

from __future__ import annotations

import codecs
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

from ptychat.parser.message import Message, new_message_id
from ptychat.parser.rules import Classification, LineKind, classify_line, normalize_line
from ptychat.parser.sanitize import ends_inside_escape, sanitize, split_lines

logger = logging.getLogger(__name__)

# Longest fragment held back while waiting for a line break.
MAX_PENDING = 4096

# Fragments of these kinds are complete as soon as they are recognised.
_EAGER_KINDS = frozenset({LineKind.TOOL, LineKind.USER, LineKind.SYSTEM})

INTERRUPT = "\x03"

OnMessage = Callable[[Message], None]


class Role(enum.Enum):
    NONE = "none"
    ASSISTANT = "assistant"


@dataclass
class ParserState:
    current_role: Role = Role.NONE
    buffer: str = ""
    current_message_id: str | None = None
    pending: str = ""  # raw text after the last line break
    opened: Message | None = field(default=None, repr=False)


class OutputParser:
    """Streaming classifier for one session's terminal output.

    Every public method returns the message snapshots it produced, in order,
    and also passes each one to ``on_message`` when given. None of them
    raise on malformed input.
    """

    def __init__(self, on_message: OnMessage | None = None) -> None:
        self._on_message = on_message
        self.state = ParserState()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def reset(self) -> None:
        """Forget everything, e.g. when (re)subscribing to a session."""
        self.state = ParserState()
        self._decoder.reset()

    @property
    def streaming(self) -> bool:
        return self.state.current_role is Role.ASSISTANT

    # -- input ---------------------------------------------------------------

    def feed(self, chunk: str | bytes) -> list[Message]:
        """Process one output chunk."""
        out: list[Message] = []
        try:
            if isinstance(chunk, bytes):
                chunk = self._decoder.decode(chunk)
            lines, rest = split_lines(self.state.pending + chunk)
            if len(rest) > MAX_PENDING or self._is_eager(rest):
                lines.append(rest)
                rest = ""
            self.state.pending = rest
            for line in lines:
                self._process_line(line, out)
        except Exception:
            # Garbage in the stream must never take the session down
            logger.exception("Dropping unparseable output chunk")
        return self._publish(out)

    def begin_turn(self, text: str) -> list[Message]:
        """The user is about to send ``text`` to the process.

        Closes the open assistant message, then emits the user message
        optimistically (blank input and Ctrl+C produce none).
        """
        out: list[Message] = []
        self._drain_pending(out)
        self._flush(out)
        content = text.rstrip("\r\n")
        if content.strip() and text != INTERRUPT:
            out.append(Message(role="user", content=content))
        return self._publish(out)

    def handle_exit(self, exit_code: int | None) -> list[Message]:
        """The process exited: close everything and note the exit code."""
        return self.close_with(f"Process exited with code {exit_code}")

    def close_with(self, note: str) -> list[Message]:
        """Close the open message, then emit ``note`` as a system message."""
        out: list[Message] = []
        self._drain_pending(out)
        self._flush(out)
        out.append(Message(role="system", content=note))
        return self._publish(out)

    def flush(self) -> list[Message]:
        """Close the open assistant message, if any."""
        out: list[Message] = []
        self._drain_pending(out)
        self._flush(out)
        return self._publish(out)

    # -- state machine -------------------------------------------------------

    @staticmethod
    def _is_eager(fragment: str) -> bool:
        """Whether an unterminated fragment can be handled without waiting.

        Prose may still grow, so only tool, user and system fragments go out
        early, and never while an escape sequence is cut in half.
        """
        if not fragment or ends_inside_escape(fragment):
            return False
        kind = classify_line(normalize_line(sanitize(fragment))).kind
        return kind in _EAGER_KINDS

    def _drain_pending(self, out: list[Message]) -> None:
        pending, self.state.pending = self.state.pending, ""
        if pending:
            self._process_line(pending, out)

    def _process_line(self, raw_line: str, out: list[Message]) -> None:
        line = normalize_line(sanitize(raw_line))
        result = classify_line(line)

        if result.kind is LineKind.SKIP:
            return
        if result.kind is LineKind.USER:
            self._flush(out)
        elif result.kind is LineKind.TOOL:
            self._flush(out)
            out.append(self._tool_message(result))
        elif result.kind is LineKind.SYSTEM:
            out.append(Message(role="system", content=result.content))
        else:
            self._accumulate(result.content, out)

    def _accumulate(self, text: str, out: list[Message]) -> None:
        state = self.state
        if state.current_role is not Role.ASSISTANT or state.opened is None:
            message = Message(
                id=new_message_id(),
                role="assistant",
                content=text,
                is_streaming=True,
            )
            state.current_role = Role.ASSISTANT
            state.current_message_id = message.id
            state.buffer = text
        else:
            state.buffer += "\n" + text
            message = state.opened.model_copy(update={"content": state.buffer})
        state.opened = message
        out.append(message)

    def _flush(self, out: list[Message]) -> None:
        state = self.state
        if state.current_role is Role.ASSISTANT and state.opened is not None:
            out.append(
                state.opened.model_copy(
                    update={"content": state.buffer, "is_streaming": False}
                )
            )
        state.current_role = Role.NONE
        state.current_message_id = None
        state.buffer = ""
        state.opened = None

    @staticmethod
    def _tool_message(result: Classification) -> Message:
        return Message(
            role="tool",
            content=result.content,
            tool_name=result.tool_name,
            tool_input=result.tool_input,
        )

    def _publish(self, messages: list[Message]) -> list[Message]:
        if self._on_message:
            for message in messages:
                self._on_message(message)
        return messages
