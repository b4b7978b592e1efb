"""Orchestration layer: relay core and WebSocket transport adapter."""

from .connection_registry import ConnectionRegistry, Connection
from .session_router import SessionRouter, Session
from .relay_engine import RelayEngine
from .messages import InboundMessage, RelayedMessage, CHAT_MESSAGE_EVENT
from .websocket_handler import WebSocketHandler, ConnectionManager

__all__ = [
    'ConnectionRegistry',
    'Connection',
    'SessionRouter',
    'Session',
    'RelayEngine',
    'InboundMessage',
    'RelayedMessage',
    'CHAT_MESSAGE_EVENT',
    'WebSocketHandler',
    'ConnectionManager',
]
