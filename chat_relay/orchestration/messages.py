"""
Wire models for chat messages and transport frames.
"""

import math
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHAT_MESSAGE_EVENT = "chat message"

Sender = Literal["user", "server"]


def coerce_identifier(value: Any) -> Any:
    """
    Turn a numeric id into its string form; other values pass through.

    Browser clients send Date.now() numbers as ids. Only integral numbers are
    accepted, so ``1.5`` never collapses into ``"1"``.

    Raises:
        ValueError: for NaN, infinities and non-integral floats
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValueError(f"identifier must be an integral number, got {value!r}")
        return str(int(value))
    return value


class InboundMessage(BaseModel):
    """A chat message as sent by a client."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    session_id: str = Field(alias="sessionId")
    text: str
    id: Optional[str] = None
    sender: Optional[str] = None
    timestamp: Optional[Any] = None

    @field_validator("session_id", "id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        return coerce_identifier(value)

    @field_validator("session_id")
    @classmethod
    def _session_id_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("sessionId must not be empty")
        return value

    @field_validator("text")
    @classmethod
    def _text_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be empty")
        return value


class RelayedMessage(BaseModel):
    """A stamped message as fanned out to session participants."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    session_id: str = Field(alias="sessionId")
    text: str
    sender: Sender = "server"
    timestamp: datetime
    origin_connection_id: str = Field(alias="originConnectionId")
    original_sender: Optional[str] = Field(None, alias="originalSender")

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready payload using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


class Frame(BaseModel):
    """Transport envelope: {"type": <event>, "data": <payload>}."""
    model_config = ConfigDict(extra="ignore")

    type: str
    data: Any = None
