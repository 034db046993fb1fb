"""Terminal output sanitizing — turn a PTY byte stream into plain lines."""

from __future__ import annotations

import re
import unicodedata

# Order matters: OSC before the generic two-byte escapes, so the "]" of an
# OSC introducer is not consumed on its own.
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")  # includes DEC private modes
_CHARSET_RE = re.compile(r"\x1b[()*+][A-Za-z0-9]")
_ESC2_RE = re.compile(r"\x1b[@-Z\\^_=>78]")
# An escape cut off at the end of the input (no final byte yet)
_DANGLING_RE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*|\][^\x07\x1b]*|[()*+])?$")

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


def strip_ansi(text: str) -> str:
    """Strip ANSI/VT escape sequences from text."""
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    text = _CHARSET_RE.sub("", text)
    text = _ESC2_RE.sub("", text)
    return _DANGLING_RE.sub("", text)


def sanitize_control(text: str, keep_newlines: bool = True) -> str:
    """Remove control characters and decoding debris.

    Keeps printable chars and tabs, plus newlines and carriage returns when
    ``keep_newlines`` is set. Strips C0/C1 controls, lone ESC bytes, the
    Unicode replacement character left by undecodable bytes, and format
    chars.
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch == "\t" or (keep_newlines and ch in ("\n", "\r")):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp in range(0xFFF9, 0xFFFE) or unicodedata.category(ch) == "Cf":
                continue
            cleaned.append(ch)
    return "".join(cleaned)


def sanitize(text: str) -> str:
    """Strip escapes, then control characters. Line breaks survive."""
    return sanitize_control(strip_ansi(text))


def split_lines(text: str) -> tuple[list[str], str]:
    """Split text on any line break.

    Returns ``(complete_lines, remainder)`` where ``remainder`` is the
    trailing fragment not yet terminated by a line break.
    """
    parts = _LINE_BREAK_RE.split(text)
    return parts[:-1], parts[-1]


def ends_inside_escape(text: str) -> bool:
    """True when ``text`` ends partway through an escape sequence."""
    return _DANGLING_RE.search(text) is not None
