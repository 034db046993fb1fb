"""Tests for ptychat.parser.sanitize."""

from __future__ import annotations

from ptychat.parser.sanitize import (
    ends_inside_escape,
    sanitize,
    sanitize_control,
    split_lines,
    strip_ansi,
)


# ---------------------------------------------------------------------------
# strip_ansi
# ---------------------------------------------------------------------------


class TestStripAnsi:
    def test_no_ansi(self) -> None:
        assert strip_ansi("hello world") == "hello world"

    def test_color_codes(self) -> None:
        assert strip_ansi("\x1b[31mred\x1b[0m") == "red"

    def test_multiple_codes(self) -> None:
        text = "\x1b[1;31;40mhello\x1b[0m \x1b[32mworld\x1b[0m"
        assert strip_ansi(text) == "hello world"

    def test_cursor_movement(self) -> None:
        assert strip_ansi("\x1b[2Ahello\x1b[2K") == "hello"

    def test_dec_private_mode(self) -> None:
        assert strip_ansi("\x1b[?2026hframe\x1b[?2026l") == "frame"
        assert strip_ansi("\x1b[?25l\x1b[?1049h") == ""

    def test_osc_with_bel(self) -> None:
        assert strip_ansi("\x1b]0;window title\x07text") == "text"

    def test_osc_with_string_terminator(self) -> None:
        assert strip_ansi("\x1b]8;;http://x\x1b\\link\x1b]8;;\x1b\\") == "link"

    def test_charset_and_keypad(self) -> None:
        assert strip_ansi("\x1b(Babc\x1b=\x1b>") == "abc"

    def test_dangling_escape_at_end(self) -> None:
        assert strip_ansi("hello\x1b[3") == "hello"
        assert strip_ansi("hello\x1b") == "hello"
        assert strip_ansi("hello\x1b]0;unfinished") == "hello"

    def test_empty_string(self) -> None:
        assert strip_ansi("") == ""


# ---------------------------------------------------------------------------
# sanitize_control
# ---------------------------------------------------------------------------


class TestSanitizeControl:
    def test_clean_text(self) -> None:
        assert sanitize_control("hello world") == "hello world"

    def test_preserves_tab_and_newlines(self) -> None:
        assert sanitize_control("a\tb\nc\rd") == "a\tb\nc\rd"

    def test_can_drop_newlines(self) -> None:
        assert sanitize_control("a\nb\rc", keep_newlines=False) == "abc"

    def test_strips_null_and_bell(self) -> None:
        assert sanitize_control("a\x00b\x07c") == "abc"

    def test_strips_lone_escape(self) -> None:
        assert sanitize_control("a\x1bb") == "ab"

    def test_strips_c1_control(self) -> None:
        assert sanitize_control("a\x7fb\x85c\x9fd") == "abcd"

    def test_strips_replacement_character(self) -> None:
        # What an undecodable byte turns into
        assert sanitize_control("ok�ok") == "okok"

    def test_strips_format_chars(self) -> None:
        assert sanitize_control("\ufeffzero\u200bwidth\u2060") == "zerowidth"

    def test_preserves_unicode(self) -> None:
        assert sanitize_control("héllo ⏺ 世界 ─") == "héllo ⏺ 世界 ─"


# ---------------------------------------------------------------------------
# sanitize / split_lines
# ---------------------------------------------------------------------------


class TestSanitize:
    def test_escapes_then_controls(self) -> None:
        assert sanitize("\x1b[32m\x00Done\x1b[0m\n") == "Done\n"


class TestSplitLines:
    def test_complete_lines(self) -> None:
        assert split_lines("a\nb\n") == (["a", "b"], "")

    def test_remainder(self) -> None:
        assert split_lines("a\nb") == (["a"], "b")

    def test_no_break(self) -> None:
        assert split_lines("partial") == ([], "partial")

    def test_mixed_breaks(self) -> None:
        assert split_lines("a\r\nb\rc\nd") == (["a", "b", "c"], "d")

    def test_empty(self) -> None:
        assert split_lines("") == ([], "")


class TestEndsInsideEscape:
    def test_complete(self) -> None:
        assert not ends_inside_escape("\x1b[0mtext")

    def test_partial_csi(self) -> None:
        assert ends_inside_escape("text\x1b[38;5")
