"""Network surface: REST session management and the WebSocket stream."""

from ptychat.server.app import create_app
from ptychat.server.connection import ClientConnection

__all__ = ["ClientConnection", "create_app"]
