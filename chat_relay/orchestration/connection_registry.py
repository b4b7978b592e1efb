"""
Connection Registry for tracking active transport connections.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from chat_relay.core.exceptions import DuplicateConnection

logger = logging.getLogger(__name__)

UnregisterListener = Callable[[str], None]


class Connection(BaseModel):
    """Registry record for one live transport connection."""
    model_config = ConfigDict(frozen=True)

    connection_id: str
    connected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    identity: Optional[str] = None


class ConnectionRegistry:
    """
    Tracks active client connections keyed by connection id.

    The registry does not own the underlying socket; the transport adapter
    does. Listeners subscribed via ``subscribe`` are called synchronously on
    every removal so that dependent state (session membership) is pruned
    before ``unregister`` returns.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._listeners: List[UnregisterListener] = []
        self._lock = threading.RLock()

    def register(self, connection_id: str, identity: Optional[str] = None) -> Connection:
        """
        Add a new active connection.

        Raises:
            DuplicateConnection: if the id is already registered
        """
        with self._lock:
            if connection_id in self._connections:
                logger.error(f"Duplicate connection registration: {connection_id}")
                raise DuplicateConnection(connection_id)

            connection = Connection(connection_id=connection_id, identity=identity)
            self._connections[connection_id] = connection

        logger.debug(f"Registered connection {connection_id}")
        return connection

    def unregister(self, connection_id: str) -> None:
        """Remove a connection. No-op if it is not registered."""
        with self._lock:
            removed = self._connections.pop(connection_id, None)
            if removed is None:
                return

            for listener in list(self._listeners):
                try:
                    listener(connection_id)
                except Exception as e:
                    logger.error(f"Unregister listener failed for {connection_id}: {e}", exc_info=True)

        logger.debug(f"Unregistered connection {connection_id}")

    def is_active(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connection_ids(self) -> List[str]:
        with self._lock:
            return list(self._connections)

    def subscribe(self, listener: UnregisterListener) -> None:
        """Register a callback invoked with the connection id on removal."""
        with self._lock:
            self._listeners.append(listener)

    def clear(self) -> None:
        """Drop every connection, notifying listeners for each one."""
        for connection_id in self.connection_ids():
            self.unregister(connection_id)
        logger.info("Connection registry cleared")

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
