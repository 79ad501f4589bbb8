"""
Session models for live collaboration.
Tracks the lifecycle of one client connection.
"""

from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field
import uuid


class ConnectionState(str, Enum):
    """Lifecycle of a collaboration connection."""
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class InvalidTransition(RuntimeError):
    """Raised when a session is moved to a state its lifecycle does not allow."""


_ALLOWED_TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.ACTIVE, ConnectionState.CLOSED},
    ConnectionState.ACTIVE: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """Generate a fresh opaque session identifier."""
    return str(uuid.uuid4())


class Session(BaseModel):
    """
    One live client connection, identified for the lifetime of that
    connection. CLOSED is terminal.
    """

    session_id: str = Field(default_factory=new_session_id)
    state: ConnectionState = ConnectionState.CONNECTING

    # Session metadata
    created_at: datetime = Field(default_factory=_utcnow)
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    client_host: Optional[str] = None

    # Traffic counters
    messages_received: int = 0
    messages_relayed: int = 0

    @property
    def is_active(self) -> bool:
        return self.state == ConnectionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def _transition(self, target: ConnectionState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Session {self.session_id} cannot move from {self.state.value} to {target.value}")
        self.state = target

    def activate(self) -> None:
        """Mark the connection as accepted and registered."""
        self._transition(ConnectionState.ACTIVE)
        self.activated_at = _utcnow()

    def close(self) -> bool:
        """Close the session; returns False if it was already closed."""
        if self.is_closed:
            return False
        self._transition(ConnectionState.CLOSED)
        self.closed_at = _utcnow()
        return True

    def record_message(self, relayed: bool) -> None:
        self.messages_received += 1
        if relayed:
            self.messages_relayed += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "client_host": self.client_host,
            "messages_received": self.messages_received,
            "messages_relayed": self.messages_relayed,
        }
