"""
WebSocket client for the chat relay.
Mirrors the browser client's transport settings: websocket-only, a bounded
number of reconnection attempts with a fixed delay between them.
"""

import json
import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake
from tenacity import (
    AsyncRetrying,
    RetryError,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log
)

from chat_relay.client.identity_client import auth_headers
from chat_relay.core.exceptions import RelayConnectionError
from chat_relay.orchestration.messages import CHAT_MESSAGE_EVENT

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class RelayClient:
    """
    Connects to ``/ws/chat`` and exchanges ``{"type", "data"}`` frames.

    Handlers registered with ``on`` receive the ``data`` of matching frames.
    When the socket drops while ``listen`` is running, the client reconnects
    and rejoins the last session it used.
    """

    def __init__(
        self,
        base_url: str,
        reconnection_attempts: int = 5,
        reconnection_delay: float = 1.0,
        token: Optional[str] = None,
        identity: Optional[str] = None,
    ):
        self.base_url = base_url
        self.reconnection_attempts = reconnection_attempts
        self.reconnection_delay = reconnection_delay
        self.token = token
        self.identity = identity

        self.websocket = None
        self.connection_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.handlers: Dict[str, List[Handler]] = {}
        self._closing = False

    @property
    def url(self) -> str:
        if not self.identity:
            return self.base_url
        separator = '&' if '?' in self.base_url else '?'
        return f"{self.base_url}{separator}{urlencode({'identity': self.identity})}"

    @property
    def connected(self) -> bool:
        return self.websocket is not None

    async def connect(self):
        """
        Open the socket, retrying on network and handshake failures.

        Raises:
            RelayConnectionError: after ``reconnection_attempts`` failed tries
        """
        self._closing = False
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.reconnection_attempts),
            wait=wait_fixed(self.reconnection_delay),
            retry=retry_if_exception_type((OSError, asyncio.TimeoutError, InvalidHandshake)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self.websocket = await websockets.connect(
                        self.url,
                        additional_headers=auth_headers(self.token)
                    )
        except (OSError, asyncio.TimeoutError, InvalidHandshake, RetryError) as e:
            self.websocket = None
            logger.error(f"Could not connect to {self.base_url} after {self.reconnection_attempts} attempt(s): {e}")
            raise RelayConnectionError(f"Could not connect to {self.base_url}") from e

        logger.info(f"Connected to relay at {self.base_url}")

    async def close(self):
        self._closing = True
        if self.websocket is not None:
            await self.websocket.close()
            self.websocket = None
            logger.info("Relay connection closed")

    def on(self, event: str, handler: Handler):
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str):
        """Remove the handlers registered with ``on``; connection bookkeeping stays."""
        self.handlers.pop(event, None)

    async def emit(self, event: str, payload: Any = None):
        if self.websocket is None:
            raise RelayConnectionError("Not connected")
        await self.websocket.send(json.dumps({'type': event, 'data': payload}))

    async def join(self, session_id: str):
        self.session_id = session_id
        await self.emit('join', {'sessionId': session_id})

    async def send_message(self, session_id: str, text: str) -> Dict[str, Any]:
        """Send a chat message the way the browser client does."""
        message = {
            'id': str(time.time_ns() // 1_000_000),
            'text': text,
            'sender': 'user',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'sessionId': session_id,
        }
        self.session_id = session_id
        await self.emit(CHAT_MESSAGE_EVENT, message)
        return message

    async def listen(self):
        """Dispatch incoming frames until ``close`` is called."""
        while not self._closing:
            if self.websocket is None:
                await self.connect()

            try:
                async for raw in self.websocket:
                    await self._dispatch(raw)
            except ConnectionClosed as e:
                logger.warning(f"Relay connection lost: {e}")

            if self._closing:
                break

            self.websocket = None
            self.connection_id = None
            logger.info("Reconnecting to relay...")
            await self.connect()
            if self.session_id:
                await self.join(self.session_id)

    async def _dispatch(self, raw):
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring non-JSON frame: {e}")
            return

        if not isinstance(frame, dict) or 'type' not in frame:
            logger.warning("Ignoring frame without a type")
            return

        if frame['type'] == 'connection_established':
            self._on_established(frame.get('data'))

        for handler in list(self.handlers.get(frame['type'], [])):
            result = handler(frame.get('data'))
            if inspect.isawaitable(result):
                await result

    def _on_established(self, data):
        if isinstance(data, dict):
            self.connection_id = data.get('connectionId')
            logger.debug(f"Relay assigned connection id {self.connection_id}")
