"""
Event system for presence notifications.

Subscribers register on an injected EventDispatcher to receive `joined`
and `left` notifications from the session tracker.
"""

from .base import BaseEvent, PlayerJoinedEvent, PlayerLeftEvent
from .dispatcher import EventDispatcher
from .types import EventType

__all__ = [
    "BaseEvent",
    "EventDispatcher",
    "EventType",
    "PlayerJoinedEvent",
    "PlayerLeftEvent",
]
