"""Event dispatcher - delivers typed events to subscribed handlers.

Subscribers are held per dispatcher instance; there is no global emitter.
A failing handler is logged and never affects the other handlers or the
code that dispatched the event.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Dict, List, TypeVar, Union

from ..logger import logger
from .base import BaseEvent, PlayerJoinedEvent, PlayerLeftEvent
from .types import EventType

EventT = TypeVar("EventT", bound=BaseEvent)

# Handlers can be sync or async
EventHandler = Union[Callable[[EventT], None], Callable[[EventT], Awaitable[None]]]


class EventDispatcher:
    """Dispatches events to registered handlers."""

    def __init__(self):
        self._handlers: Dict[EventType, List[Callable]] = {
            event_type: [] for event_type in EventType
        }

    def on_player_joined(self, handler: EventHandler[PlayerJoinedEvent]) -> None:
        """Register handler for player joined events."""
        self._handlers[EventType.PLAYER_JOINED].append(handler)

    def on_player_left(self, handler: EventHandler[PlayerLeftEvent]) -> None:
        """Register handler for player left events."""
        self._handlers[EventType.PLAYER_LEFT].append(handler)

    def remove_handler(self, handler: Callable) -> None:
        for handlers in self._handlers.values():
            if handler in handlers:
                handlers.remove(handler)

    async def dispatch_player_joined(self, event: PlayerJoinedEvent) -> None:
        await self._dispatch_event(event)

    async def dispatch_player_left(self, event: PlayerLeftEvent) -> None:
        await self._dispatch_event(event)

    async def _dispatch_event(self, event: BaseEvent) -> None:
        """Run all handlers for the event concurrently and wait for them.

        Args:
            event: Event to dispatch
        """
        handlers = list(self._handlers.get(event.event_type, []))

        if not handlers:
            logger.debug(f"No handlers registered for event: {event.event_type}")
            return

        tasks = []
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                tasks.append(asyncio.create_task(handler(event)))
            else:
                tasks.append(asyncio.create_task(asyncio.to_thread(handler, event)))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)!s} failed for event {event.event_type}: {result}",
                    exc_info=result,
                )
