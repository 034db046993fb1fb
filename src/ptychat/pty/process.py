"""PTY process — one pseudo-terminal-backed child per session."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
from typing import Callable

logger = logging.getLogger(__name__)

READ_SIZE = 65536

OnData = Callable[[str], None]
OnExit = Callable[[int], None]


class SpawnError(Exception):
    """The child process could not be started."""


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY process."""

    RUNNING = "running"
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


def set_window_size(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", max(1, int(rows)), max(1, int(cols)), 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


class PTYProcess:
    """A child process attached to a pseudo-terminal.

    Wraps an interactive CLI with:
    - Process group isolation (start_new_session) for safe tree-killing
    - Event-loop reader/writer callbacks on the master fd, so many sessions
      share one thread
    - Incremental UTF-8 decoding of output
    - Exactly-once exit notification, whether the child died on its own or
      was killed

    Use :meth:`spawn` to create one; it must be called from inside a running
    event loop.
    """

    def __init__(
        self,
        proc: subprocess.Popen,
        master_fd: int,
        loop: asyncio.AbstractEventLoop,
        on_data: OnData | None = None,
        on_exit: OnExit | None = None,
    ) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self._loop = loop
        self._on_data = on_data
        self._on_exit = on_exit
        self._pgid = os.getpgid(proc.pid)
        self._status = PTYStatus.RUNNING
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._outbox = bytearray()
        self._writer_registered = False
        self._closed = False
        self._exit_reported = False
        self._reap_task: asyncio.Future | None = None
        self._reap_scheduled = asyncio.Event()

    @classmethod
    def spawn(
        cls,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str,
        cols: int = 120,
        rows: int = 40,
        env: dict[str, str] | None = None,
        on_data: OnData | None = None,
        on_exit: OnExit | None = None,
    ) -> PTYProcess:
        """Spawn ``command`` in a new PTY with its own session.

        Raises:
            SpawnError: the working directory is not a directory, the
                executable cannot be started, or a PTY cannot be allocated.
        """
        if not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}")

        loop = asyncio.get_running_loop()

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Could not allocate a PTY: {e}") from e

        full_env = {**os.environ, **(env or {})}
        full_env.pop("PROMPT_COMMAND", None)

        try:
            set_window_size(slave_fd, cols, rows)
            proc = subprocess.Popen(
                [command, *(args or [])],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=full_env,
                cwd=cwd,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to spawn {command!r}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        process = cls(proc, master_fd, loop, on_data=on_data, on_exit=on_exit)
        loop.add_reader(master_fd, process._on_readable)

        logger.info(
            "PTY process started: pid=%d cwd=%s cmd=%s",
            proc.pid,
            cwd,
            " ".join([command, *(args or [])]),
        )
        return process

    # -- reading -----------------------------------------------------------

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO: the slave side is gone
            data = b""

        if not data:
            self._close_fd()
            self._schedule_reap()
            return

        text = self._decoder.decode(data)
        if text and self._on_data:
            self._on_data(text)

    # -- writing -----------------------------------------------------------

    def write(self, data: str | bytes) -> bool:
        """Queue input for the child. Returns False if the child is not running."""
        if not self.alive:
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._outbox.extend(data)
        self._flush_outbox()
        return True

    def _flush_outbox(self) -> None:
        if self._closed:
            self._outbox.clear()
            return
        while self._outbox:
            try:
                written = os.write(self._master_fd, self._outbox)
            except BlockingIOError:
                break
            except OSError as e:
                logger.debug("PTY write to pid %d failed: %s", self.pid, e)
                self._outbox.clear()
                break
            del self._outbox[:written]

        if self._outbox and not self._writer_registered:
            self._loop.add_writer(self._master_fd, self._flush_outbox)
            self._writer_registered = True
        elif not self._outbox and self._writer_registered:
            self._loop.remove_writer(self._master_fd)
            self._writer_registered = False

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the terminal. Returns False if the child is not running."""
        if not self.alive:
            return False
        try:
            set_window_size(self._master_fd, cols, rows)
        except OSError as e:
            logger.debug("PTY resize of pid %d failed: %s", self.pid, e)
            return False
        # The slave is not our controlling terminal, so nobody else tells the
        # child its window changed.
        try:
            os.killpg(self._pgid, signal.SIGWINCH)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.debug("SIGWINCH to pid %d failed: %s", self.pid, e)
        return True

    # -- termination -------------------------------------------------------

    def kill(self) -> None:
        """Kill the entire process tree. ``on_exit`` still fires once."""
        if self._status != PTYStatus.RUNNING:
            return

        self._status = PTYStatus.KILLED
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY process pid=%d (pgid=%d)", self.pid, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY process pid=%d: %s", self.pid, e)

        self._close_fd()
        self._schedule_reap()

    def _close_fd(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.remove_reader(self._master_fd)
        if self._writer_registered:
            self._loop.remove_writer(self._master_fd)
            self._writer_registered = False
        self._outbox.clear()
        try:
            os.close(self._master_fd)
        except OSError:
            pass

    def _schedule_reap(self) -> None:
        if self._reap_task is not None:
            return
        self._reap_task = asyncio.ensure_future(self._reap(), loop=self._loop)
        self._reap_scheduled.set()

    async def _reap(self) -> None:
        # Wait for the child off-loop (avoids zombies without blocking)
        exit_code = await self._loop.run_in_executor(None, self._proc.wait)
        if self._status == PTYStatus.RUNNING:
            self._status = PTYStatus.EXITED
        logger.info("PTY process pid=%d exited (code=%s)", self.pid, exit_code)
        self._report_exit(exit_code)

    def _report_exit(self, exit_code: int) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        if self._on_exit:
            try:
                self._on_exit(exit_code)
            except Exception:
                logger.exception("Error in on_exit callback for pid %d", self.pid)

    async def wait(self) -> int:
        """Wait until the child has been reaped and return its exit code."""
        await self._reap_scheduled.wait()
        await self._reap_task
        return self._proc.returncode

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING and not self._closed

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def exit_code(self) -> int | None:
        return self._proc.returncode
