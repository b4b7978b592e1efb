"""Transport doubles for relay tests"""
import json
import asyncio
from typing import Any, Dict, List, Optional

from websockets.exceptions import ConnectionClosedError

DISCONNECT = object()


class RecordingTransport:
    """Records emits instead of sending them"""

    def __init__(self, failing: Optional[set] = None):
        self.emitted: List[Dict[str, Any]] = []
        self.failing = failing or set()

    def emit(self, connection_id: str, event: str, payload: Dict[str, Any]) -> None:
        if connection_id in self.failing:
            raise ConnectionError(f"socket for {connection_id} is gone")
        self.emitted.append({"connection_id": connection_id, "event": event, "payload": payload})

    def delivered_to(self, connection_id: str) -> List[Dict[str, Any]]:
        return [e["payload"] for e in self.emitted if e["connection_id"] == connection_id]

    def recipients(self) -> List[str]:
        return [e["connection_id"] for e in self.emitted]


class MockWebSocket:
    """Mock FastAPI WebSocket driven by a queue of inbound frames"""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.messages_sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed_with: Optional[int] = None

    async def accept(self):
        self.accepted = True

    async def receive(self):
        item = await self.incoming.get()
        if item is DISCONNECT:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        if isinstance(item, str):
            return {"type": "websocket.receive", "text": item}
        return {"type": "websocket.receive", "text": json.dumps(item)}

    async def send_json(self, data: Dict[str, Any]):
        self.messages_sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.closed_with = code

    def feed(self, event: str, data: Any = None):
        self.incoming.put_nowait({"type": event, "data": data})

    def feed_raw(self, item: Any):
        self.incoming.put_nowait(item)

    def disconnect(self):
        self.incoming.put_nowait(DISCONNECT)

    def frames(self, event: str) -> List[Any]:
        return [m["data"] for m in self.messages_sent if m.get("type") == event]

    async def wait_for(self, event: str, count: int = 1, timeout: float = 2.0) -> List[Any]:
        """Wait until at least ``count`` frames of ``event`` were sent"""
        async def _poll():
            while len(self.frames(event)) < count:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(_poll(), timeout)
        return self.frames(event)


class FakeRelaySocket:
    """Client-side websocket double for RelayClient tests"""

    def __init__(self, frames: Optional[List[Any]] = None, drop_after: bool = False):
        self.frames = [f if isinstance(f, str) else json.dumps(f) for f in (frames or [])]
        self.drop_after = drop_after
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def send(self, message: str):
        self.sent.append(json.loads(message))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            await asyncio.sleep(0)
            yield frame
        if self.drop_after:
            raise ConnectionClosedError(None, None)
