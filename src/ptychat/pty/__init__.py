"""PTY process management — pseudo-terminal children and their output.

Every assistant session runs in a PTY with process group isolation, output
buffering and exactly-once exit notification.
"""

from ptychat.pty.buffer import LogBuffer
from ptychat.pty.process import PTYProcess, PTYStatus, SpawnError

__all__ = [
    "LogBuffer",
    "PTYProcess",
    "PTYStatus",
    "SpawnError",
]
