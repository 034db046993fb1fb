"""Configuration — Pydantic models for ptychat settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Network-facing settings."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3001)
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        description="Origins allowed to call the REST API from a browser",
    )
    outbound_queue_size: int = Field(
        default=1024,
        description=(
            "Frames buffered per WebSocket client. A client that falls this "
            "far behind is disconnected instead of growing memory."
        ),
    )


class SessionConfig(BaseModel):
    """How assistant sessions are spawned and buffered.

    The command is fixed here, never taken from clients.
    """

    command: str = Field(default="claude")
    args: list[str] = Field(default_factory=lambda: ["--dangerously-skip-permissions"])
    cols: int = Field(default=120, description="Initial terminal width")
    rows: int = Field(default=40, description="Initial terminal height")
    term: str = Field(default="xterm-256color")
    replay_limit: int = Field(
        default=100, description="Log entries replayed to a new subscriber"
    )
    max_log_entries: int = Field(
        default=10_000, description="Log entries kept per session (oldest dropped)"
    )


class PtyChatConfig(BaseModel):
    """Top-level ptychat configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PtyChatConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYCHAT_HOST             - Address to bind
            PTYCHAT_PORT             - Port to bind
            PTYCHAT_COMMAND          - Assistant executable
            PTYCHAT_ARGS             - Arguments for it (shell-style string)
            PTYCHAT_REPLAY_LIMIT     - Log entries replayed on subscribe
            PTYCHAT_MAX_LOG_ENTRIES  - Log entries kept per session
        """
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        server = config_data.get("server", {})
        session = config_data.get("session", {})

        env_host = os.environ.get("PTYCHAT_HOST")
        if env_host:
            server["host"] = env_host

        env_port = os.environ.get("PTYCHAT_PORT")
        if env_port:
            server["port"] = int(env_port)

        env_command = os.environ.get("PTYCHAT_COMMAND")
        if env_command:
            session["command"] = env_command

        env_args = os.environ.get("PTYCHAT_ARGS")
        if env_args is not None:
            session["args"] = shlex.split(env_args)

        env_replay = os.environ.get("PTYCHAT_REPLAY_LIMIT")
        if env_replay:
            session["replay_limit"] = int(env_replay)

        env_max_logs = os.environ.get("PTYCHAT_MAX_LOG_ENTRIES")
        if env_max_logs:
            session["max_log_entries"] = int(env_max_logs)

        if server:
            config_data["server"] = server
        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)
