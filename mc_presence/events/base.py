"""Base event model for all events."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .types import EventType


class BaseEvent(BaseModel):
    """Base class for all events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PlayerJoinedEvent(BaseEvent):
    """Fired after a session was opened for a player."""

    event_type: EventType = EventType.PLAYER_JOINED
    player_name: str = Field(..., description="Display name at join time")
    identifier: str = Field(..., description="Stable account identifier")


class PlayerLeftEvent(BaseEvent):
    """Fired after a session was closed, explicitly or by the watchdog."""

    event_type: EventType = EventType.PLAYER_LEFT
    player_name: str = Field(..., description="Display name at leave time")
    identifier: str = Field(..., description="Stable account identifier")
    session_duration_ms: int = Field(..., ge=0, description="Closed session length")
    reason: str = Field(default="", description="Why the session was closed")
