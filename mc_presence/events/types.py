"""Event type definitions."""

from enum import Enum


class EventType(str, Enum):
    """All event types in the system."""

    PLAYER_JOINED = "player.joined"
    PLAYER_LEFT = "player.left"
