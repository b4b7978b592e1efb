"""Mock objects for testing"""

from .mock_transport import RecordingTransport, MockWebSocket, FakeRelaySocket

__all__ = [
    'RecordingTransport',
    'MockWebSocket',
    'FakeRelaySocket'
]
