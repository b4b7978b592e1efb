"""
WebSocket Handler for real-time chat relay.
Manages WebSocket connections and routes frames into the relay core.
"""

import json
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chat_relay.core.exceptions import DuplicateConnection
from chat_relay.orchestration.connection_registry import ConnectionRegistry
from chat_relay.orchestration.messages import CHAT_MESSAGE_EVENT, Frame, coerce_identifier
from chat_relay.orchestration.relay_engine import RelayEngine
from chat_relay.orchestration.session_router import SessionRouter

logger = logging.getLogger(__name__)


class _Outbound:
    """Socket, FIFO queue and writer task for one connection."""

    def __init__(self, websocket: WebSocket, queue_size: int):
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.writer: Optional[asyncio.Task] = None


class ConnectionManager:
    """
    Manages active WebSocket connections.

    Every connection gets a bounded outbound queue drained by its own writer
    task, so ``emit`` never blocks and frames reach each socket in the order
    they were emitted.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self.active_connections: Dict[str, _Outbound] = {}

    async def connect(self, websocket: WebSocket, connection_id: str):
        """Accept and store a new WebSocket connection."""
        await websocket.accept()
        outbound = _Outbound(websocket, self.queue_size)
        outbound.writer = asyncio.create_task(self._writer_loop(connection_id, outbound))
        self.active_connections[connection_id] = outbound
        logger.info(f"WebSocket connected: {connection_id}")

    def disconnect(self, connection_id: str):
        """Remove a WebSocket connection; frames still queued are dropped."""
        outbound = self.active_connections.pop(connection_id, None)
        if outbound is None:
            return

        if outbound.writer is not None:
            outbound.writer.cancel()
        dropped = outbound.queue.qsize()
        if dropped:
            logger.debug(f"Dropped {dropped} undelivered frame(s) for {connection_id}")
        logger.info(f"WebSocket disconnected: {connection_id}")

    def disconnect_all(self):
        """Drop every connection and stop its writer task."""
        for connection_id in list(self.active_connections):
            self.disconnect(connection_id)

    def emit(self, connection_id: str, event: str, payload: Any) -> None:
        """Queue a frame for a connection. Unknown connections are ignored."""
        outbound = self.active_connections.get(connection_id)
        if outbound is None:
            logger.debug(f"Emit to inactive connection {connection_id} dropped")
            return

        try:
            outbound.queue.put_nowait({'type': event, 'data': payload})
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for {connection_id}, dropping '{event}' frame")

    async def send_message(self, connection_id: str, event: str, payload: Any = None):
        """Send a frame to a specific connection, behind anything already queued."""
        self.emit(connection_id, event, payload)

    async def _writer_loop(self, connection_id: str, outbound: _Outbound):
        try:
            while True:
                frame = await outbound.queue.get()
                try:
                    await outbound.websocket.send_json(frame)
                except Exception as e:
                    logger.warning(f"Send to {connection_id} failed, frame dropped: {e}")
        except asyncio.CancelledError:
            pass


class WebSocketHandler:
    """
    Handles WebSocket connections for the chat relay.
    Bridges transport events (connect, message, disconnect) into the
    registry, router and relay engine.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: SessionRouter,
        connection_manager: ConnectionManager,
        relay_engine: RelayEngine,
        heartbeat_interval: float = 30.0,
    ):
        self.registry = registry
        self.router = router
        self.connection_manager = connection_manager
        self.relay_engine = relay_engine
        self.heartbeat_interval = heartbeat_interval
        self.message_handlers: Dict[str, Callable[[Any, str], Awaitable[None]]] = {
            CHAT_MESSAGE_EVENT: self._handle_chat_message,
            'join': self._handle_join,
            'leave': self._handle_leave,
            'ping': self._handle_ping,
        }

    async def handle_connection(self, websocket: WebSocket, identity: Optional[str] = None):
        """
        Handle a WebSocket connection lifecycle.

        Steps:
        1. Accept WebSocket connection
        2. Register it with the relay core
        3. Send connection_established and start heartbeat
        4. Run the message listener loop
        5. Unregister before returning, pruning session membership
        """
        connection_id = str(uuid.uuid4())
        heartbeat_task = None
        registered = False

        try:
            await self.connection_manager.connect(websocket, connection_id)

            try:
                self.registry.register(connection_id, identity=identity)
                registered = True
            except DuplicateConnection:
                await websocket.close(code=1011, reason="Duplicate connection")
                return

            await self.connection_manager.send_message(connection_id, 'connection_established', {
                'connectionId': connection_id,
                'timestamp': datetime.now(timezone.utc).isoformat()
            })

            if self.heartbeat_interval > 0:
                heartbeat_task = asyncio.create_task(self._heartbeat_loop(connection_id))

            await self._message_listener(websocket, connection_id)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally: {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for {connection_id}: {e}", exc_info=True)
        finally:
            if registered:
                self.registry.unregister(connection_id)
                self.router.leave(connection_id)
            self.connection_manager.disconnect(connection_id)
            if heartbeat_task is not None:
                heartbeat_task.cancel()

    async def _message_listener(self, websocket: WebSocket, connection_id: str):
        """Listen for frames from the WebSocket until it closes."""
        while True:
            try:
                data = await self._receive_frame(websocket)
            except WebSocketDisconnect:
                break
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Dropped non-JSON frame from {connection_id}: {e}")
                continue

            try:
                await self.process_frame(data, connection_id)
            except Exception as e:
                logger.error(f"Error processing frame from {connection_id}: {e}", exc_info=True)

    async def _receive_frame(self, websocket: WebSocket) -> Any:
        """Read one text or binary frame and decode it as JSON."""
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))

        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8")
        return json.loads(text)

    async def process_frame(self, data: Any, connection_id: str):
        """Parse the envelope and route it to the handler for its event type."""
        if not isinstance(data, dict):
            logger.warning(f"Dropped frame that is not an object from {connection_id}")
            return

        try:
            frame = Frame.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Dropped malformed frame from {connection_id}: {e}")
            return

        logger.debug(f"Processing frame: type={frame.type}, connection={connection_id}")

        handler = self.message_handlers.get(frame.type, self._handle_unknown)
        await handler(frame, connection_id)

    async def _handle_chat_message(self, frame: Frame, connection_id: str):
        self.relay_engine.relay(connection_id, frame.data)

    async def _handle_join(self, frame: Frame, connection_id: str):
        """Explicitly join a session, e.g. to receive before sending."""
        session_id = frame.data.get('sessionId') if isinstance(frame.data, dict) else None
        try:
            session_id = coerce_identifier(session_id)
        except ValueError:
            session_id = None
        if not isinstance(session_id, str) or not session_id.strip():
            await self.connection_manager.send_message(connection_id, 'error', {
                'message': 'join requires a non-empty sessionId'
            })
            return

        self.router.join(session_id, connection_id)
        await self.connection_manager.send_message(connection_id, 'joined', {
            'sessionId': session_id,
            'participants': len(self.router.participants_of(session_id))
        })

    async def _handle_leave(self, frame: Frame, connection_id: str):
        session_id = self.router.session_of(connection_id)
        self.router.leave(connection_id)
        await self.connection_manager.send_message(connection_id, 'left', {'sessionId': session_id})

    async def _handle_ping(self, frame: Frame, connection_id: str):
        """Handle ping messages for connection health check."""
        await self.connection_manager.send_message(connection_id, 'pong', {
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

    async def _handle_unknown(self, frame: Frame, connection_id: str):
        """Handle unknown event types."""
        await self.connection_manager.send_message(connection_id, 'error', {
            'message': f"Unknown event type: {frame.type}"
        })

    async def _heartbeat_loop(self, connection_id: str):
        """Send periodic heartbeat frames to keep the connection alive."""
        try:
            while connection_id in self.connection_manager.active_connections:
                await asyncio.sleep(self.heartbeat_interval)
                await self.connection_manager.send_message(connection_id, 'heartbeat', {
                    'timestamp': datetime.now(timezone.utc).isoformat()
                })
        except asyncio.CancelledError:
            pass
