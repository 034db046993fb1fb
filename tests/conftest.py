"""Shared fixtures: an in-memory stand-in for PTY processes."""

from __future__ import annotations

import os

import pytest

from ptychat.config import SessionConfig
from ptychat.pty.process import OnData, OnExit, SpawnError
from ptychat.session.registry import SessionRegistry


class FakeProcess:
    """Records what the registry asks of it; output is pushed by the test."""

    def __init__(
        self,
        command: str,
        args: list[str],
        cwd: str,
        env: dict[str, str] | None,
        on_data: OnData | None,
        on_exit: OnExit | None,
    ) -> None:
        self.command = command
        self.args = args
        self.cwd = cwd
        self.env = env
        self.on_data = on_data
        self.on_exit = on_exit
        self.writes: list[str | bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.killed = False
        self.exited = False

    @property
    def alive(self) -> bool:
        return not self.killed and not self.exited

    def write(self, data: str | bytes) -> bool:
        if not self.alive:
            return False
        self.writes.append(data)
        return True

    def resize(self, cols: int, rows: int) -> bool:
        if not self.alive:
            return False
        self.sizes.append((cols, rows))
        return True

    def kill(self) -> None:
        self.killed = True

    # -- driven by tests ---------------------------------------------------

    def emit(self, data: str) -> None:
        if self.on_data:
            self.on_data(data)

    def exit(self, code: int = 0) -> None:
        self.exited = True
        if self.on_exit:
            self.on_exit(code)


class FakeSpawner:
    """Drop-in for ``PTYProcess.spawn`` that never touches the OS."""

    def __init__(self) -> None:
        self.spawned: list[FakeProcess] = []
        self.sizes: list[tuple[int, int]] = []

    def __call__(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str,
        cols: int,
        rows: int,
        env: dict[str, str] | None,
        on_data: OnData | None,
        on_exit: OnExit | None,
    ) -> FakeProcess:
        if not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}")
        process = FakeProcess(command, list(args or []), cwd, env, on_data, on_exit)
        self.spawned.append(process)
        self.sizes.append((cols, rows))
        return process

    @property
    def last(self) -> FakeProcess:
        return self.spawned[-1]


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(command="assistant", args=["--yes"], replay_limit=100)


@pytest.fixture
def registry(spawner: FakeSpawner, session_config: SessionConfig) -> SessionRegistry:
    return SessionRegistry(config=session_config, spawner=spawner)
