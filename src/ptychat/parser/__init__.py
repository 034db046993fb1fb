"""Output parser — terminal bytes in, chat messages out."""

from ptychat.parser.message import Message
from ptychat.parser.reconstructor import OutputParser, ParserState
from ptychat.parser.rules import Classification, LineKind, classify_line, is_noise
from ptychat.parser.sanitize import sanitize, strip_ansi

__all__ = [
    "Classification",
    "LineKind",
    "Message",
    "OutputParser",
    "ParserState",
    "classify_line",
    "is_noise",
    "sanitize",
    "strip_ansi",
]
