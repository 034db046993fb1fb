"""HTTP + WebSocket surface for the session registry."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from ptychat import __version__
from ptychat.config import PtyChatConfig
from ptychat.server.connection import ClientConnection
from ptychat.session.fanout import LIFECYCLE_EVENTS
from ptychat.session.models import LogEntry, OpResult, SessionView, utcnow
from ptychat.session.registry import SessionRegistry

logger = logging.getLogger(__name__)


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    working_dir: str | None = Field(default=None, alias="workingDir")


def _raise_for(result: OpResult, action: str) -> None:
    if result is OpResult.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Session not found")
    if not result:
        raise HTTPException(
            status_code=400, detail=f"Failed to {action} session: {result.value}"
        )


def _resolve_dir(path: str | None) -> str:
    return os.path.abspath(os.path.expanduser(path)) if path else os.getcwd()


def create_app(
    config: PtyChatConfig | None = None,
    registry: SessionRegistry | None = None,
) -> FastAPI:
    """Build the FastAPI app around a registry (a fresh one by default)."""
    config = config or PtyChatConfig()
    registry = registry if registry is not None else SessionRegistry(config.session)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("Shutting down, stopping %d session(s)", len(registry))
        registry.shutdown()
        registry.fanout.close()

    app = FastAPI(title="ptychat", version=__version__, lifespan=lifespan)
    app.state.registry = registry
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- sessions ------------------------------------------------------------

    @app.get("/api/sessions", response_model=list[SessionView])
    async def list_sessions() -> list[SessionView]:
        return registry.list_sessions()

    @app.post("/api/sessions", response_model=SessionView)
    async def create_session(body: SessionRequest) -> SessionView:
        return registry.create(body.name, _resolve_dir(body.working_dir))

    @app.patch("/api/sessions/{session_id}", response_model=SessionView)
    async def update_session(session_id: str, body: SessionRequest) -> SessionView:
        working_dir = _resolve_dir(body.working_dir) if body.working_dir else None
        _raise_for(registry.update(session_id, body.name, working_dir), "update")
        return registry.get(session_id)

    @app.post("/api/sessions/{session_id}/start")
    async def start_session(session_id: str) -> dict:
        _raise_for(registry.start(session_id), "start")
        return {"success": True}

    @app.post("/api/sessions/{session_id}/stop")
    async def stop_session(session_id: str) -> dict:
        _raise_for(registry.stop(session_id), "stop")
        return {"success": True}

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str) -> dict:
        _raise_for(registry.delete(session_id), "delete")
        return {"success": True}

    @app.get("/api/sessions/{session_id}/logs", response_model=list[LogEntry])
    async def get_logs(session_id: str, limit: int | None = None) -> list[LogEntry]:
        logs = registry.get_logs(session_id, limit if limit and limit > 0 else None)
        if logs is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return logs

    @app.get("/api/health")
    async def health() -> dict:
        return {"status": "ok", "timestamp": utcnow().isoformat()}

    # -- live stream ---------------------------------------------------------

    @app.websocket("/ws")
    async def ws_session(websocket: WebSocket) -> None:
        await websocket.accept()
        connection = ClientConnection(registry, config.server.outbound_queue_size)
        events = registry.fanout.watch(LIFECYCLE_EVENTS)

        async def close_overflowed() -> None:
            # Fell too far behind; tell the client why
            if websocket.application_state is WebSocketState.CONNECTED:
                await websocket.close(code=1011, reason="outbox overflow")

        async def send() -> None:
            await connection.pump(websocket.send_json)
            if connection.overflowed:
                await close_overflowed()

        async def forward_lifecycle() -> None:
            while True:
                event = await events.get()
                if event is None:
                    break
                connection.notify(event)

        with registry.fanout.attached(connection):
            tasks = [
                asyncio.create_task(send()),
                asyncio.create_task(forward_lifecycle()),
            ]
            try:
                while not connection.closed.is_set():
                    connection.handle(await websocket.receive_text())
                if connection.overflowed:
                    await close_overflowed()
            except WebSocketDisconnect:
                pass
            finally:
                registry.fanout.unwatch(events)
                connection.close()
                for task in tasks:
                    task.cancel()
                results = await asyncio.gather(*tasks, return_exceptions=True)
                for result in results:
                    if isinstance(result, Exception) and not isinstance(
                        result, WebSocketDisconnect
                    ):
                        logger.warning("WebSocket connection ended: %s", result)
                logger.debug("WebSocket client disconnected")

    return app
