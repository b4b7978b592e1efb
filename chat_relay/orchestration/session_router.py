"""
Session Router mapping chat session ids to participating connections.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from chat_relay.core.exceptions import UnknownSession
from chat_relay.orchestration.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Session(BaseModel):
    """Session state held by the router."""
    session_id: str
    participants: Set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Stamp clock: last issued millisecond id and timestamp
    last_sequence: int = 0
    last_timestamp: Optional[datetime] = None
    issued_ids: Set[str] = Field(default_factory=set)


class SessionRouter:
    """
    Maps a session id to the set of connections participating in it.

    A connection participates in at most one session at a time; joining a
    new session leaves the previous one. Sessions are created on first join
    and destroyed when their last participant leaves.

    All mutations run under a single router lock, since a join touches two
    sessions (the one being left and the one being joined).
    """

    def __init__(self, registry: Optional[ConnectionRegistry] = None):
        self.registry = registry
        self._sessions: Dict[str, Session] = {}
        self._membership: Dict[str, str] = {}  # connection_id -> session_id
        self._lock = threading.RLock()

        if registry is not None:
            registry.subscribe(self.leave)

    def join(self, session_id: str, connection_id: str) -> None:
        """
        Add a connection to a session, creating the session if needed.
        Idempotent; implicitly leaves any other session first.
        """
        with self._lock:
            current = self._membership.get(connection_id)
            if current == session_id:
                return

            if current is not None:
                self._remove_participant(current, connection_id)

            session = self._sessions.get(session_id)
            if session is None:
                session = Session(session_id=session_id)
                self._sessions[session_id] = session
                logger.info(f"Created session {session_id}")

            session.participants.add(connection_id)
            self._membership[connection_id] = session_id

        logger.debug(f"Connection {connection_id} joined session {session_id}")

    def leave(self, connection_id: str) -> None:
        """Remove a connection from every session it participates in."""
        with self._lock:
            session_id = self._membership.pop(connection_id, None)
            if session_id is None:
                return
            self._remove_participant(session_id, connection_id)

        logger.debug(f"Connection {connection_id} left session {session_id}")

    def participants_of(self, session_id: str) -> FrozenSet[str]:
        """Snapshot of the session's active participants; empty if unknown."""
        with self._lock:
            try:
                session = self._lookup(session_id)
            except UnknownSession:
                return frozenset()

            participants = frozenset(session.participants)

        if self.registry is None:
            return participants
        return frozenset(c for c in participants if self.registry.is_active(c))

    def session_of(self, connection_id: str) -> Optional[str]:
        return self._membership.get(connection_id)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def stamp(self, session_id: str, requested_id: Optional[str] = None) -> Tuple[str, datetime]:
        """
        Issue the next message id and timestamp for a session.

        ``requested_id`` is kept when no earlier message of the session used
        it. Otherwise the id is wall-clock milliseconds, bumped past the
        previous generated id and past any id already issued. Timestamps
        never go backwards within a session.

        Raises:
            UnknownSession: if the session does not exist
        """
        with self._lock:
            session = self._lookup(session_id)

            now = datetime.now(timezone.utc)
            if session.last_timestamp is not None and now < session.last_timestamp:
                now = session.last_timestamp
            session.last_timestamp = now

            if requested_id is not None and requested_id not in session.issued_ids:
                message_id = requested_id
            else:
                if requested_id is not None:
                    logger.debug(f"Message id {requested_id} already used in session {session_id}, reassigning")
                sequence = max(time.time_ns() // 1_000_000, session.last_sequence + 1)
                while str(sequence) in session.issued_ids:
                    sequence += 1
                session.last_sequence = sequence
                message_id = str(sequence)

            session.issued_ids.add(message_id)
            return message_id, now

    def clear(self) -> None:
        """Drop all sessions and memberships."""
        with self._lock:
            self._sessions.clear()
            self._membership.clear()
        logger.info("Session router cleared")

    def _lookup(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    def _remove_participant(self, session_id: str, connection_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return

        session.participants.discard(connection_id)
        if not session.participants:
            del self._sessions[session_id]
            logger.info(f"Destroyed session {session_id} (no participants left)")

    def __len__(self) -> int:
        return len(self._sessions)
