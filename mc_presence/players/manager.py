"""Presence system manager."""

from typing import Optional

from ..config import Settings
from ..db.store import SessionStore
from ..events import EventDispatcher
from ..log_monitor import LogMonitor, LogParser
from ..logger import logger
from ..rcon import RconClient
from .identity import IdentityResolver, MojangIdentityResolver
from .poller import PresencePoller
from .session_tracker import SessionTracker


class PresenceSystemManager:
    """Builds and runs the presence tracking components."""

    def __init__(
        self,
        app_settings: Settings,
        identity_resolver: Optional[IdentityResolver] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
    ):
        """Initialize presence system manager.

        Args:
            app_settings: Application settings
            identity_resolver: Overrides the Mojang API resolver
            event_dispatcher: Shared dispatcher, a new one by default
        """
        self.settings = app_settings
        self.event_dispatcher = event_dispatcher or EventDispatcher()

        self.store = SessionStore(app_settings.database_url)
        self.rcon_client = RconClient(app_settings.rcon)
        self.identity_resolver = identity_resolver or MojangIdentityResolver(
            app_settings.identity
        )
        self.poller = PresencePoller(
            self.rcon_client,
            poll_interval_ms=app_settings.tracker.poll_interval_ms,
            max_consecutive_failures=app_settings.tracker.max_consecutive_failures,
        )
        self.session_tracker = SessionTracker(
            store=self.store,
            poller=self.poller,
            identity_resolver=self.identity_resolver,
            event_dispatcher=self.event_dispatcher,
            tracker_settings=app_settings.tracker,
        )

        self.log_monitor: Optional[LogMonitor] = None
        if app_settings.log_monitor.enabled:
            self.log_monitor = LogMonitor(
                self.session_tracker, LogParser(app_settings.log_monitor)
            )

    async def start(self) -> None:
        logger.info("Starting presence tracking system...")

        # Reconnects in the background on failure
        await self.rcon_client.connect()
        await self.session_tracker.initialize()

        if self.log_monitor:
            await self.log_monitor.watch(self.settings.log_monitor.log_path)

        logger.info("Presence tracking system started successfully")

    async def stop(self) -> None:
        logger.info("Stopping presence tracking system...")

        # No new joins while sessions are being drained
        if self.log_monitor:
            await self.log_monitor.stop()

        await self.session_tracker.shutdown()

        logger.info("Presence tracking system stopped")
