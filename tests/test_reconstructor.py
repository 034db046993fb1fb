"""Tests for ptychat.parser.reconstructor.OutputParser."""

from __future__ import annotations

from ptychat.parser.message import Message
from ptychat.parser.reconstructor import MAX_PENDING, OutputParser, Role


def _feed_all(parser: OutputParser, *chunks: str | bytes) -> list[Message]:
    out: list[Message] = []
    for chunk in chunks:
        out.extend(parser.feed(chunk))
    return out


# ---------------------------------------------------------------------------
# Accumulation
# ---------------------------------------------------------------------------


class TestAccumulation:
    def test_raw_line_opens_one_streaming_message(self) -> None:
        parser = OutputParser()
        out = parser.feed("Hello there\n")
        assert len(out) == 1
        assert out[0].role == "assistant"
        assert out[0].content == "Hello there"
        assert out[0].is_streaming is True
        assert parser.state.current_role is Role.ASSISTANT
        assert parser.state.current_message_id == out[0].id

    def test_raw_lines_join_under_one_id(self) -> None:
        parser = OutputParser()
        out = _feed_all(parser, "first\n", "second\nthird\n")
        assert len({m.id for m in out}) == 1
        assert out[-1].content == "first\nsecond\nthird"
        assert all(m.is_streaming for m in out)
        assert parser.state.buffer == "first\nsecond\nthird"

    def test_partial_line_waits_for_line_break(self) -> None:
        parser = OutputParser()
        assert parser.feed("Hel") == []
        assert parser.state.pending == "Hel"
        out = parser.feed("lo\n")
        assert [m.content for m in out] == ["Hello"]

    def test_ansi_split_across_chunks(self) -> None:
        parser = OutputParser()
        out = _feed_all(parser, "\x1b[3", "2mgreen\x1b[0m\n")
        assert [m.content for m in out] == ["green"]

    def test_noise_does_not_open_message(self) -> None:
        parser = OutputParser()
        out = parser.feed("──────────\n\n⏵⏵ bypass permissions on\n")
        assert out == []
        assert parser.state.current_role is Role.NONE

    def test_crlf_and_carriage_return(self) -> None:
        parser = OutputParser()
        out = parser.feed("one\r\ntwo\rthree\n")
        assert out[-1].content == "one\ntwo\nthree"

    def test_long_fragment_is_not_held_forever(self) -> None:
        parser = OutputParser()
        out = parser.feed("x" * (MAX_PENDING + 1))
        assert len(out) == 1
        assert parser.state.pending == ""


# ---------------------------------------------------------------------------
# Flush rules
# ---------------------------------------------------------------------------


class TestFlush:
    def test_user_echo_flushes_without_message(self) -> None:
        parser = OutputParser()
        parser.feed("answer\n")
        out = parser.feed("> next question\n")
        assert len(out) == 1
        assert out[0].role == "assistant"
        assert out[0].is_streaming is False
        assert parser.state.current_role is Role.NONE
        assert parser.state.buffer == ""

    def test_user_echo_with_nothing_open_emits_nothing(self) -> None:
        parser = OutputParser()
        assert parser.feed("> hello\n") == []

    def test_tool_flushes_then_emits_tool(self) -> None:
        parser = OutputParser()
        opened = parser.feed("Let me look.\n")[0]
        out = parser.feed("Bash: ls -la\n")
        assert [m.role for m in out] == ["assistant", "tool"]
        assert out[0].id == opened.id
        assert out[0].content == "Let me look."
        assert out[0].is_streaming is False
        assert out[1].tool_name == "Bash"
        assert out[1].is_streaming is False
        assert parser.state.current_role is Role.NONE

    def test_repeated_tool_lines_are_not_deduplicated(self) -> None:
        parser = OutputParser()
        out = parser.feed("Bash: make\nBash: make\n")
        assert [m.role for m in out] == ["tool", "tool"]
        assert out[0].id != out[1].id

    def test_system_line_leaves_accumulation_open(self) -> None:
        parser = OutputParser()
        opened = parser.feed("working\n")[0]
        out = parser.feed("Error: disk full\nstill working\n")
        assert [m.role for m in out] == ["system", "assistant"]
        assert out[1].id == opened.id
        assert out[1].content == "working\nstill working"
        assert out[1].is_streaming is True

    def test_prose_after_flush_opens_new_message(self) -> None:
        parser = OutputParser()
        first = parser.feed("one\n")[0]
        parser.feed("> q\n")
        second = parser.feed("two\n")[0]
        assert first.id != second.id


class TestBeginTurn:
    def test_flushes_before_user_message(self) -> None:
        parser = OutputParser()
        parser.feed("thinking out loud\n")
        out = parser.begin_turn("do it\n")
        assert [m.role for m in out] == ["assistant", "user"]
        assert out[0].is_streaming is False
        assert out[1].content == "do it"
        assert not parser.streaming

    def test_ctrl_c_is_not_a_user_message(self) -> None:
        parser = OutputParser()
        assert parser.begin_turn("\x03") == []

    def test_blank_input_is_not_a_user_message(self) -> None:
        parser = OutputParser()
        assert parser.begin_turn("\r") == []

    def test_pending_fragment_is_processed_first(self) -> None:
        parser = OutputParser()
        parser.feed("unterminated answer")
        out = parser.begin_turn("next")
        assert [(m.role, m.content) for m in out] == [
            ("assistant", "unterminated answer"),
            ("assistant", "unterminated answer"),
            ("user", "next"),
        ]
        assert out[1].is_streaming is False


class TestExit:
    def test_exit_flushes_and_appends_system_message(self) -> None:
        parser = OutputParser()
        parser.feed("last words\n")
        out = parser.handle_exit(1)
        assert [m.role for m in out] == ["assistant", "system"]
        assert out[0].is_streaming is False
        assert out[1].content == "Process exited with code 1"

    def test_exit_with_nothing_open(self) -> None:
        parser = OutputParser()
        out = parser.handle_exit(0)
        assert [m.content for m in out] == ["Process exited with code 0"]


# ---------------------------------------------------------------------------
# Robustness
# ---------------------------------------------------------------------------


class TestMalformedInput:
    def test_invalid_utf8_is_dropped(self) -> None:
        parser = OutputParser()
        out = parser.feed(b"ok\xff\xfe text\n")
        assert [m.content for m in out] == ["ok text"]

    def test_utf8_split_across_chunks(self) -> None:
        parser = OutputParser()
        encoded = "café\n".encode()
        out = _feed_all(parser, encoded[:4], encoded[4:])
        assert [m.content for m in out] == ["café"]

    def test_control_garbage(self) -> None:
        parser = OutputParser()
        assert parser.feed("\x00\x01\x02\x1b\n") == []

    def test_reset_clears_state(self) -> None:
        parser = OutputParser()
        parser.feed("open\npartial")
        parser.reset()
        assert parser.state.current_role is Role.NONE
        assert parser.state.pending == ""
        assert parser.flush() == []


# ---------------------------------------------------------------------------
# Unterminated fragments
# ---------------------------------------------------------------------------


class TestFragments:
    def test_tool_fragment_is_not_held(self) -> None:
        parser = OutputParser()
        out = parser.feed("Bash: ls -la")
        assert [m.role for m in out] == ["tool"]
        assert out[0].tool_input == "ls -la"
        assert parser.state.pending == ""

    def test_tool_fragment_closes_open_prose(self) -> None:
        parser = OutputParser()
        opened = parser.feed("Checking.\n")[0]
        out = parser.feed("⏺ Read(src/main.py)")
        assert [m.role for m in out] == ["assistant", "tool"]
        assert out[0].id == opened.id
        assert out[0].is_streaming is False
        assert out[1].tool_name == "Read"

    def test_system_fragment_is_not_held(self) -> None:
        parser = OutputParser()
        out = parser.feed("Error: disk full")
        assert [(m.role, m.content) for m in out] == [("system", "Error: disk full")]

    def test_user_echo_fragment_closes_open_prose(self) -> None:
        parser = OutputParser()
        parser.feed("answer\n")
        out = parser.feed("> next question")
        assert [m.role for m in out] == ["assistant"]
        assert out[0].is_streaming is False
        assert not parser.streaming

    def test_fragment_cut_inside_escape_waits(self) -> None:
        parser = OutputParser()
        assert parser.feed("Bash: ls\x1b[3") == []
        assert parser.state.pending == "Bash: ls\x1b[3"
        out = parser.feed("2m\n")
        assert [m.role for m in out] == ["tool"]
        assert out[0].tool_input == "ls"

    def test_prose_fragment_still_waits(self) -> None:
        parser = OutputParser()
        assert parser.feed("Bash is a shell") == []
        assert parser.state.pending == "Bash is a shell"


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


def _fold(messages: list[Message]) -> list[Message]:
    """Collapse snapshots by id, keeping first-seen order."""
    folded: dict[str, Message] = {}
    for message in messages:
        folded[message.id] = message
    return list(folded.values())


class TestCallback:
    def test_on_message_receives_every_snapshot(self) -> None:
        seen: list[Message] = []
        parser = OutputParser(on_message=seen.append)
        out = parser.feed("a\nb\n")
        assert seen == out

    def test_hello_world_then_tool(self) -> None:
        seen: list[Message] = []
        parser = OutputParser(on_message=seen.append)
        parser.feed("Hello")
        parser.feed(" world\n")
        parser.feed("Bash: ls -la")

        messages = _fold(seen)
        assert len(messages) == 2
        assistant, tool = messages
        assert assistant.role == "assistant"
        assert assistant.content == "Hello world"
        assert assistant.is_streaming is False
        assert tool.role == "tool"
        assert tool.tool_name == "Bash"
        assert tool.content == "Bash: ls -la"
        assert tool.tool_input == "ls -la"

    def test_flush_closes_streaming_message(self) -> None:
        seen: list[Message] = []
        parser = OutputParser(on_message=seen.append)
        parser.feed("still going\n")
        assert seen[-1].is_streaming is True
        parser.flush()
        assert seen[-1].is_streaming is False
        assert len(_fold(seen)) == 1

    def test_wire_format_uses_camel_case(self) -> None:
        message = Message(role="tool", content="Bash: ls", tool_name="Bash", tool_input="ls")
        wire = message.to_wire()
        assert wire["toolName"] == "Bash"
        assert wire["toolInput"] == "ls"
        assert wire["isStreaming"] is False
