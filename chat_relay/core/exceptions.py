"""Exceptions raised by the relay core and its client adapters."""

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidMessage(RelayError):
    """Inbound payload is malformed; the message is dropped."""

    def __init__(self, reason: str, payload: Optional[object] = None):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload


class DuplicateConnection(RelayError):
    """A connection id was registered twice."""

    def __init__(self, connection_id: str):
        super().__init__(f"Connection already registered: {connection_id}")
        self.connection_id = connection_id


class UnknownSession(RelayError):
    """Lookup of a session id that has no participants."""

    def __init__(self, session_id: str):
        super().__init__(f"Unknown session: {session_id}")
        self.session_id = session_id


class RelayConnectionError(RelayError):
    """The relay client could not reach the transport endpoint."""


class IdentityError(RelayError):
    """The identity provider rejected a login or signup request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
