"""
Relay Engine: validates, stamps and fans out inbound chat messages.
"""

import logging
from typing import Any, Dict, FrozenSet, Literal, Optional, Protocol

from pydantic import ValidationError

from chat_relay.core.exceptions import InvalidMessage, UnknownSession
from chat_relay.orchestration.messages import CHAT_MESSAGE_EVENT, InboundMessage, RelayedMessage
from chat_relay.orchestration.session_router import SessionRouter

logger = logging.getLogger(__name__)

FanoutMode = Literal["session", "echo"]


class Transport(Protocol):
    """Outbound side of the transport adapter."""

    def emit(self, connection_id: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class RelayEngine:
    """
    Stateless per call: all session state lives in the SessionRouter.

    ``ingest`` runs without suspending, so the emits for one message are all
    issued before the next message from the same connection is looked at.
    """

    def __init__(self, router: SessionRouter, transport: Transport, fanout_mode: FanoutMode = "session"):
        self.router = router
        self.transport = transport
        self.fanout_mode = fanout_mode

    def ingest(self, connection_id: str, raw_message: Any) -> RelayedMessage:
        """
        Validate, stamp and fan out one inbound message.

        Args:
            connection_id: Originating connection
            raw_message: Decoded payload of a "chat message" event

        Returns:
            The stamped copy that was delivered

        Raises:
            InvalidMessage: sessionId or text missing/empty, or payload not an object
        """
        inbound = self._parse(raw_message)
        session_id = inbound.session_id

        # Sending into a session makes the sender a participant of it
        self.router.join(session_id, connection_id)

        try:
            message_id, timestamp = self.router.stamp(session_id, requested_id=inbound.id or None)
        except UnknownSession:
            # Sender disconnected between join and stamp
            raise InvalidMessage(f"session {session_id} vanished during ingest", raw_message)

        relayed = RelayedMessage(
            id=message_id,
            session_id=session_id,
            text=inbound.text,
            sender="server",
            timestamp=timestamp,
            origin_connection_id=connection_id,
            original_sender=inbound.sender,
        )

        recipients = self.recipients_for(session_id, connection_id)
        payload = relayed.to_payload()
        for recipient in sorted(recipients):
            self._deliver(recipient, payload)

        logger.debug(f"Relayed message {relayed.id} in session {session_id} to {len(recipients)} connection(s)")
        return relayed

    def relay(self, connection_id: str, raw_message: Any) -> Optional[RelayedMessage]:
        """Transport entry point: like ``ingest`` but drops invalid messages."""
        try:
            return self.ingest(connection_id, raw_message)
        except InvalidMessage as e:
            logger.warning(f"Dropped invalid message from {connection_id}: {e.reason}")
            return None

    def recipients_for(self, session_id: str, connection_id: str) -> FrozenSet[str]:
        participants = self.router.participants_of(session_id)
        if self.fanout_mode == "echo":
            return participants & {connection_id}
        return participants

    def _parse(self, raw_message: Any) -> InboundMessage:
        if not isinstance(raw_message, dict):
            raise InvalidMessage("message payload must be an object", raw_message)
        try:
            return InboundMessage.model_validate(raw_message)
        except ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'message'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidMessage(reasons, raw_message) from e

    def _deliver(self, recipient: str, payload: Dict[str, Any]) -> None:
        try:
            self.transport.emit(recipient, CHAT_MESSAGE_EVENT, payload)
        except Exception as e:
            # No retry: delivery is the transport's concern
            logger.warning(f"Delivery to {recipient} failed: {e}")
