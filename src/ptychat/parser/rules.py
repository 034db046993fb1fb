"""Line classification rules for assistant CLI output.

Two policies live here, both pure functions of a single sanitized line:

* :func:`is_noise` — drops terminal UI chrome (separators, banners,
  keybinding hints, status lines). Patterns are deliberately narrow: chrome
  that leaks through is cosmetic, real content dropped is not.
* :func:`classify_line` — assigns the surviving line a kind by walking
  :data:`RULES` top to bottom; the first matching rule wins. Tool rules come
  before the user-prompt rule so a tool line is never mistaken for an echo.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable

TOOL_NAMES = (
    "Read",
    "Write",
    "Edit",
    "MultiEdit",
    "Bash",
    "Grep",
    "Glob",
    "LS",
    "Search",
    "WebFetch",
    "WebSearch",
    "Task",
    "TodoWrite",
    "NotebookEdit",
)
_TOOL_ALT = "|".join(TOOL_NAMES)

MIN_DEBRIS_LENGTH = 3

NOISE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^[─-╿▀-▟\s\-=_]+$"),  # box-drawing separators
    re.compile(r"⏵⏵"),  # permission mode indicator
    re.compile(r"bypass permissions", re.IGNORECASE),
    re.compile(r"shift\+tab to cycle", re.IGNORECASE),
    re.compile(r"^\s*⏵"),
    re.compile(
        r"\b(?:esc|ctrl\+\w)\s+to\s+(?:interrupt|cancel|exit|expand)\b",
        re.IGNORECASE,
    ),  # keybinding hints
    re.compile(r"^\?\s+for shortcuts", re.IGNORECASE),
    re.compile(r"MCP server", re.IGNORECASE),
    re.compile(r"^/\w+\s+for\s+info", re.IGNORECASE),
    re.compile(r'^Try "'),  # example prompts
    re.compile(r"^\[\??[0-9;]*[a-zA-Z]?\]?$"),  # escape remnants like [?2026l
    re.compile(r"^\d+\s+tokens\b", re.IGNORECASE),
]

# Chrome trimmed from both ends of a line before it is filtered/classified:
# input-box borders and the bullets the CLI puts in front of its turns.
_BORDER_LEFT_RE = re.compile(r"^[│┃║╭╰]\s?")
_BORDER_RIGHT_RE = re.compile(r"\s?[│┃║╮╯]$")
_BULLET_RE = re.compile(r"^[⏺●]\s*")


class LineKind(enum.Enum):
    SKIP = "skip"
    USER = "user"
    TOOL = "tool"
    SYSTEM = "system"
    RAW = "raw"


@dataclass(frozen=True)
class Classification:
    kind: LineKind
    content: str = ""
    tool_name: str | None = None
    tool_input: str | None = None


def normalize_line(line: str) -> str:
    """Trim whitespace, box borders and turn bullets."""
    text = line.strip()
    text = _BORDER_LEFT_RE.sub("", text)
    text = _BORDER_RIGHT_RE.sub("", text)
    text = _BULLET_RE.sub("", text.strip())
    return text.strip()


def is_noise(line: str) -> bool:
    """True for blank lines, UI chrome and escape-code debris."""
    if not line.strip():
        return True
    if len(line) < MIN_DEBRIS_LENGTH and not re.search(r"[a-zA-Z]", line):
        return True
    return any(p.search(line) for p in NOISE_PATTERNS)


# -- rules -----------------------------------------------------------------


def _tool(pattern: str) -> Callable[[str], Classification | None]:
    compiled = re.compile(pattern, re.IGNORECASE)

    def match(line: str) -> Classification | None:
        m = compiled.match(line)
        if not m:
            return None
        tool_input = line[m.end():].strip()
        if m.group(0).rstrip().endswith("(") and tool_input.endswith(")"):
            tool_input = tool_input[:-1].rstrip()
        return Classification(
            kind=LineKind.TOOL,
            content=line,
            tool_name=m.group(1),
            tool_input=tool_input,
        )

    return match


_USER_RE = re.compile(r"^(?:[❯>]\s|You:|Human:)")
_USER_PREFIX_RE = re.compile(r"^(?:[❯>]\s*|You:\s*|Human:\s*)")


def _user(line: str) -> Classification | None:
    if not _USER_RE.match(line):
        return None
    content = _USER_PREFIX_RE.sub("", line, count=1).strip()
    if not content:
        # A bare prompt carries nothing
        return Classification(kind=LineKind.SKIP)
    return Classification(kind=LineKind.USER, content=content)


_SYSTEM_RE = re.compile(
    r"Session started"
    r"|Process exited"
    r"|^Error:"
    r"|\bConnection (?:lost|closed|refused|reset|established|timed out)\b"
    r"|^(?:Connected to|Disconnected from|Reconnecting)\b",
    re.IGNORECASE,
)


def _system(line: str) -> Classification | None:
    if _SYSTEM_RE.search(line):
        return Classification(kind=LineKind.SYSTEM, content=line)
    return None


_ASSISTANT_RE = re.compile(r"^(?:Claude|Assistant):\s*")


def _assistant_marker(line: str) -> Classification | None:
    m = _ASSISTANT_RE.match(line)
    if not m:
        return None
    content = line[m.end():]
    if not content:
        return Classification(kind=LineKind.SKIP)
    return Classification(kind=LineKind.RAW, content=content)


Rule = Callable[[str], Classification | None]

# Evaluated in order; the first rule returning a Classification wins.
RULES: list[tuple[str, Rule]] = [
    ("tool-call", _tool(rf"^({_TOOL_ALT})\s*[:(]")),
    ("using-tool", _tool(rf"^Using tool:\s*({_TOOL_ALT})\b")),
    ("tool-prefix", _tool(rf"^Tool:\s*({_TOOL_ALT})\b")),
    ("user-prompt", _user),
    ("system", _system),
    ("assistant-marker", _assistant_marker),
]


def classify_line(line: str) -> Classification:
    """Classify one normalized line. Anything unmatched is assistant prose."""
    if is_noise(line):
        return Classification(kind=LineKind.SKIP)
    for _name, rule in RULES:
        result = rule(line)
        if result is not None:
            return result
    return Classification(kind=LineKind.RAW, content=line)
