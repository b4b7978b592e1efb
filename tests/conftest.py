"""
Pytest configuration and shared fixtures
"""
import os

# Keep the app from starting a config file watcher during tests
os.environ.setdefault("WATCH_CONFIG", "false")

import pytest

from chat_relay.orchestration.connection_registry import ConnectionRegistry
from chat_relay.orchestration.session_router import SessionRouter
from chat_relay.orchestration.relay_engine import RelayEngine
from tests.mocks import RecordingTransport


@pytest.fixture
def registry():
    """Fresh connection registry per test"""
    return ConnectionRegistry()


@pytest.fixture
def router(registry):
    """Session router wired to the registry"""
    return SessionRouter(registry)


@pytest.fixture
def transport():
    """Transport double that records every emit"""
    return RecordingTransport()


@pytest.fixture
def engine(router, transport):
    """Relay engine in session fan-out mode"""
    return RelayEngine(router=router, transport=transport)


@pytest.fixture
def echo_engine(router, transport):
    """Relay engine restricted to sender echo"""
    return RelayEngine(router=router, transport=transport, fanout_mode="echo")


@pytest.fixture
def connected(registry):
    """Register connections by id and return them"""
    def _connect(*connection_ids):
        for connection_id in connection_ids:
            registry.register(connection_id)
        return connection_ids
    return _connect


@pytest.fixture
def sample_messages():
    """Chat messages as the browser client sends them"""
    return [
        {
            "id": 1718000000000,
            "text": "hi",
            "sender": "user",
            "timestamp": "2024-06-10T06:13:20.000Z",
            "sessionId": "s1"
        },
        {
            "id": 1718000000500,
            "text": "how are you?",
            "sender": "user",
            "timestamp": "2024-06-10T06:13:20.500Z",
            "sessionId": "s1"
        },
        {
            "text": "no id on this one",
            "sessionId": "s1"
        }
    ]
