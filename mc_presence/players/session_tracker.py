"""Session tracking: join/leave, heartbeat refresh and the stale session watchdog."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..background_tasks.periodic import PeriodicTask
from ..config import TrackerSettings
from ..db.store import SessionStore
from ..events.base import PlayerJoinedEvent, PlayerLeftEvent
from ..events.dispatcher import EventDispatcher
from ..logger import log_exception, logger
from ..models import AccountPublic, AccountStats, WatchdogConfig
from ..utils.time import datetime_to_ms, format_duration, now_ms
from .identity import IdentityResolver
from .poller import PresencePoller

REASON_REJOINED = "rejoined"
REASON_WATCHDOG = "watchdog timeout"
REASON_CRASH = "system crash"
REASON_SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class ActiveSessionEntry:
    """In-memory mirror of an open session in the store."""

    identifier: str
    display_name: str
    session_start_ms: int


class SessionTracker:
    """Tracks player sessions and cumulative playtime.

    Join and leave signals come in through ``player_joined`` and
    ``player_left``. A heartbeat tick refreshes last-seen for players the
    poller confirmed online, then lets the watchdog close sessions that have
    not been confirmed for ``session_timeout_ms``. Both steps are skipped
    while the poller is unreliable, so a broken polling channel can neither
    keep a session alive nor close one.
    """

    def __init__(
        self,
        store: SessionStore,
        poller: PresencePoller,
        identity_resolver: IdentityResolver,
        event_dispatcher: EventDispatcher,
        tracker_settings: Optional[TrackerSettings] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize session tracker.

        Args:
            store: Durable account store
            poller: Presence poller gating the heartbeat and watchdog
            identity_resolver: Display name to identifier lookup
            event_dispatcher: Receives joined/left notifications
            tracker_settings: Heartbeat, timeout and crash detection timings
            clock: Epoch millisecond clock
        """
        tracker_settings = tracker_settings or TrackerSettings()

        self.store = store
        self.poller = poller
        self.identity_resolver = identity_resolver
        self.event_dispatcher = event_dispatcher
        self._clock = clock

        self.heartbeat_interval_ms = tracker_settings.heartbeat_interval_ms
        self.session_timeout_ms = tracker_settings.session_timeout_ms
        self.crash_threshold_ms = tracker_settings.crash_threshold_ms

        # identifier -> entry, plus a display name index for leave lookups
        self._active: dict[str, ActiveSessionEntry] = {}
        self._active_by_name: dict[str, str] = {}
        # One lock per account ever seen, bounded by the number of accounts.
        # A lock is never dropped since a waiter may still hold a reference.
        self._account_locks: defaultdict[str, asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

        # First tick after one interval, so the poller has reported by then
        self._heartbeat = PeriodicTask(
            "session-heartbeat",
            self._heartbeat_tick,
            interval=lambda: self.heartbeat_interval_ms / 1000,
            run_immediately=False,
        )
        self._shut_down = False

    # Lifecycle

    async def initialize(self) -> None:
        """Prepare the store, recover open sessions and start both loops."""
        logger.info("Initializing session tracker...")
        await self.store.init()
        await self._recover_from_crash()
        await self._restore_active_sessions()

        self._shut_down = False
        self.poller.start()
        self._heartbeat.start()

        logger.info(
            f"Session tracker initialized with {await self.count_accounts()} accounts, "
            f"{len(self._active)} open sessions"
        )

    async def shutdown(self) -> None:
        """Stop both loops, close every open session and release resources."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down session tracker...")

        await self._heartbeat.stop()
        await self.poller.stop()

        # Joins already holding an account lock finish before the drain
        for lock in list(self._account_locks.values()):
            async with lock:
                pass

        now = self._clock()
        for entry in list(self._active.values()):
            await self._close_session(
                entry.identifier, entry.display_name, REASON_SHUTDOWN, now
            )

        # Sessions the in-memory map lost track of
        try:
            leftovers = await self.store.get_open_sessions()
        except Exception as e:
            logger.error(f"Error listing open sessions on shutdown: {e}", exc_info=True)
            leftovers = []
        for account in leftovers:
            await self._close_session(
                account.identifier, account.display_name, REASON_SHUTDOWN, now
            )

        await self.store.close()
        await self.poller.rcon_client.disconnect()
        logger.info("Session tracker shut down")

    # Join / leave

    async def player_joined(self, player_name: str) -> Optional[str]:
        """Open a session for a player.

        A join for an account that already has an open session closes that
        session first, crediting its playtime, and then opens a new one.
        Joins arriving during or after shutdown are dropped.

        Args:
            player_name: Display name reported by the server

        Returns:
            Account identifier, or None if the join was dropped
        """
        now = self._clock()
        identifier = await self._resolve_identifier(player_name)
        if identifier is None:
            logger.warning(f"Could not resolve identifier for {player_name}, join dropped")
            return None
        if self._shut_down:
            logger.warning(f"Session tracker shut down, join of {player_name} dropped")
            return None

        previous: Optional[AccountPublic] = None
        previous_duration: Optional[int] = None
        opened = False

        async with self._account_locks[identifier]:
            # shutdown() may have started while waiting for the lock
            if self._shut_down:
                logger.warning(f"Session tracker shut down, join of {player_name} dropped")
                return None
            try:
                previous = await self.store.get_account_by_identifier(identifier)
                if previous is not None and previous.session_start_ms is not None:
                    previous_duration = await self.store.close_session(identifier, now)
                    self._pop_active(identifier)
                await self.store.upsert_account(identifier, player_name, now)
                await self.store.open_session(identifier, now)
                opened = True
            except Exception as e:
                logger.error(
                    f"Failed to persist join for {player_name} ({identifier}), "
                    f"in-memory state may diverge from the store: {e}",
                    exc_info=True,
                )
            else:
                self._set_active(ActiveSessionEntry(identifier, player_name, now))

        # The earlier session is credited even when reopening failed
        if previous is not None and previous_duration is not None:
            logger.warning(
                f"{player_name} joined with a session already open, closed it after "
                f"{format_duration(previous_duration)}"
            )
            await self.event_dispatcher.dispatch_player_left(
                PlayerLeftEvent(
                    player_name=previous.display_name,
                    identifier=identifier,
                    session_duration_ms=previous_duration,
                    reason=REASON_REJOINED,
                )
            )

        if not opened:
            return None

        logger.info(f"Player joined: {player_name} ({identifier})")
        await self.event_dispatcher.dispatch_player_joined(
            PlayerJoinedEvent(player_name=player_name, identifier=identifier)
        )
        return identifier

    async def player_left(self, player_name: str, reason: str = "") -> Optional[int]:
        """Close the session of a player.

        Args:
            player_name: Display name reported by the server
            reason: Disconnect reason, passed on in the left event

        Returns:
            Session duration in ms, or None if there was no session to close
        """
        now = self._clock()
        identifier = self._active_by_name.get(player_name)

        if identifier is None:
            try:
                account = await self.store.get_account_by_name(player_name)
            except Exception as e:
                logger.error(
                    f"Error looking up account for {player_name}: {e}", exc_info=True
                )
                return None
            identifier = account.identifier if account else None

        if identifier is None:
            logger.warning(f"Player left but no account found: {player_name}")
            return None

        return await self._close_session(identifier, player_name, reason, now)

    # Heartbeat and watchdog

    async def heartbeat_tick(self) -> None:
        """Run one heartbeat, waiting for a scheduled tick in flight."""
        await self._heartbeat.run_once()

    async def _heartbeat_tick(self) -> None:
        now = self._clock()
        await self._write_system_heartbeat(now)

        if not self.poller.is_reliable():
            logger.warning(
                f"Presence poller unreliable ({self.poller.consecutive_failures} "
                f"consecutive failures), skipping last-seen refresh and watchdog"
            )
            return

        confirmed = self.poller.confirmed_online
        for entry in list(self._active.values()):
            if entry.display_name in confirmed:
                await self._refresh_last_seen(entry.identifier, now)
            else:
                logger.debug(
                    f"{entry.display_name} not confirmed online by poller, last-seen not refreshed"
                )

        await self.check_for_stale_sessions()

    async def check_for_stale_sessions(self) -> int:
        """Force-close open sessions whose last-seen exceeded the timeout.

        Returns:
            Number of sessions closed
        """
        now = self._clock()
        timeout = self.session_timeout_ms
        try:
            stale = await self.store.get_stale_open_sessions(timeout, now)
        except Exception as e:
            logger.error(f"Error querying stale sessions: {e}", exc_info=True)
            return 0

        closed = 0
        for account in stale:
            age = now - datetime_to_ms(account.last_seen)
            logger.warning(
                f"Watchdog closing stale session for {account.display_name} "
                f"({account.identifier}): last seen {age}ms ago, timeout {timeout}ms"
            )
            duration = await self._close_session(
                account.identifier,
                account.display_name,
                REASON_WATCHDOG,
                now,
                expected_start_ms=account.session_start_ms,
            )
            if duration is not None:
                closed += 1

        if closed:
            logger.info(f"Watchdog closed {closed} stale sessions")
        return closed

    # Queries

    async def get_all_accounts(self) -> List[AccountPublic]:
        return await self.store.get_all_accounts()

    async def get_online_identifiers(self) -> set[str]:
        return {account.identifier for account in await self.store.get_open_sessions()}

    async def get_online_display_names(self) -> List[str]:
        accounts = await self.store.get_open_sessions()
        return sorted(account.display_name for account in accounts)

    async def get_account_stats(self, player_name: str) -> Optional[AccountStats]:
        account = await self.store.get_account_by_name(player_name)
        if account is None:
            return None

        current = 0
        if account.session_start_ms is not None:
            current = max(0, self._clock() - account.session_start_ms)

        return AccountStats(
            **account.model_dump(),
            online=account.session_start_ms is not None,
            current_session_ms=current,
            total_playtime_formatted=format_duration(account.total_playtime_ms),
        )

    async def count_accounts(self) -> int:
        return await self.store.count_accounts()

    def get_active_sessions(self) -> List[ActiveSessionEntry]:
        return list(self._active.values())

    def get_watchdog_config(self) -> WatchdogConfig:
        return WatchdogConfig(
            heartbeat_interval_ms=self.heartbeat_interval_ms,
            session_timeout_ms=self.session_timeout_ms,
            poll_interval_ms=self.poller.poll_interval_ms,
            max_consecutive_failures=self.poller.max_consecutive_failures,
            poller_reliable=self.poller.is_reliable(),
            consecutive_failures=self.poller.consecutive_failures,
        )

    def set_session_timeout(self, timeout_ms: int) -> None:
        if timeout_ms <= 0:
            raise ValueError(f"Session timeout must be positive, got {timeout_ms}")
        logger.info(
            f"Session timeout changed from {self.session_timeout_ms}ms to {timeout_ms}ms"
        )
        self.session_timeout_ms = timeout_ms

    # Internals

    @log_exception("Error resolving identifier for {player_name}")
    async def _resolve_identifier(self, player_name: str) -> Optional[str]:
        return await self.identity_resolver.resolve(player_name)

    @log_exception("Error updating system heartbeat")
    async def _write_system_heartbeat(self, now: int) -> None:
        await self.store.upsert_heartbeat(now)

    @log_exception("Error refreshing last-seen for {identifier}")
    async def _refresh_last_seen(self, identifier: str, now: int) -> None:
        await self.store.refresh_last_seen(identifier, now)

    async def _close_session(
        self,
        identifier: str,
        player_name: str,
        reason: str,
        now: int,
        expected_start_ms: Optional[int] = None,
    ) -> Optional[int]:
        """Close a session once and emit the left event.

        Closing an already closed session is a no-op returning None.
        """
        async with self._account_locks[identifier]:
            try:
                duration = await self.store.close_session(
                    identifier, now, expected_start_ms
                )
            except Exception as e:
                logger.error(
                    f"Failed to close session for {player_name} ({identifier}), "
                    f"in-memory state may diverge from the store: {e}",
                    exc_info=True,
                )
                return None

            entry = self._active.get(identifier)
            if duration is None:
                if entry is not None and expected_start_ms is None:
                    self._pop_active(identifier)
                logger.debug(f"No open session to close for {player_name} ({identifier})")
                return None

            self._pop_active(identifier)

        name = entry.display_name if entry else player_name
        logger.info(
            f"Player left: {name} ({identifier}), session {format_duration(duration)}"
            + (f" [{reason}]" if reason else "")
        )
        await self.event_dispatcher.dispatch_player_left(
            PlayerLeftEvent(
                player_name=name,
                identifier=identifier,
                session_duration_ms=duration,
                reason=reason,
            )
        )
        return duration

    def _set_active(self, entry: ActiveSessionEntry) -> None:
        self._pop_active(entry.identifier)
        self._active[entry.identifier] = entry
        self._active_by_name[entry.display_name] = entry.identifier

    def _pop_active(self, identifier: str) -> Optional[ActiveSessionEntry]:
        entry = self._active.pop(identifier, None)
        if entry and self._active_by_name.get(entry.display_name) == identifier:
            del self._active_by_name[entry.display_name]
        return entry

    async def _recover_from_crash(self) -> None:
        """Close sessions left open by a crash at the last heartbeat time."""
        try:
            last_heartbeat = await self.store.get_heartbeat_ms()
        except Exception as e:
            logger.error(f"Error checking for crash: {e}", exc_info=True)
            return

        if last_heartbeat is None:
            logger.info("No previous heartbeat found (first startup)")
            return

        since = self._clock() - last_heartbeat
        if since < self.crash_threshold_ms:
            logger.info(f"Normal restart detected (last heartbeat {since}ms ago)")
            return

        logger.warning(f"System crash detected! Last heartbeat was {since}ms ago")
        try:
            open_sessions = await self.store.get_open_sessions()
        except Exception as e:
            logger.error(f"Error listing open sessions for recovery: {e}", exc_info=True)
            return

        for account in open_sessions:
            await self._close_session(
                account.identifier, account.display_name, REASON_CRASH, last_heartbeat
            )
        logger.info(f"Crash recovery closed {len(open_sessions)} sessions")

    async def _restore_active_sessions(self) -> None:
        try:
            open_sessions = await self.store.get_open_sessions()
        except Exception as e:
            logger.error(f"Error restoring open sessions: {e}", exc_info=True)
            return

        for account in open_sessions:
            assert account.session_start_ms is not None
            self._set_active(
                ActiveSessionEntry(
                    account.identifier, account.display_name, account.session_start_ms
                )
            )
        if open_sessions:
            logger.info(f"Restored {len(open_sessions)} open sessions from the store")
