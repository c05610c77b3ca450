"""RCON-based presence polling with a reliability counter."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from ..background_tasks.periodic import PeriodicTask
from ..logger import logger
from ..rcon import RconClient
from ..utils.time import now_ms


@dataclass(frozen=True)
class PresenceSnapshot:
    """What the poller last confirmed. Replaced as a whole on every tick."""

    confirmed_online: frozenset[str] = field(default_factory=frozenset)
    consecutive_failures: int = 0
    last_success_ms: Optional[int] = None


class PresencePoller:
    """Polls the online player list and tracks how trustworthy it is."""

    def __init__(
        self,
        rcon_client: RconClient,
        poll_interval_ms: int = 60_000,
        max_consecutive_failures: int = 3,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize presence poller.

        Args:
            rcon_client: Console client used for the player list
            poll_interval_ms: Delay between polls
            max_consecutive_failures: Failures in a row that make the poller unreliable
            clock: Epoch millisecond clock
        """
        self.rcon_client = rcon_client
        self.poll_interval_ms = poll_interval_ms
        self.max_consecutive_failures = max_consecutive_failures
        self._clock = clock
        self._snapshot = PresenceSnapshot()

        self._task = PeriodicTask(
            "presence-poller",
            self._poll,
            interval=lambda: self.poll_interval_ms / 1000,
        )

    def snapshot(self) -> PresenceSnapshot:
        return self._snapshot

    @property
    def confirmed_online(self) -> frozenset[str]:
        return self._snapshot.confirmed_online

    @property
    def consecutive_failures(self) -> int:
        return self._snapshot.consecutive_failures

    def is_reliable(self) -> bool:
        return self._snapshot.consecutive_failures < self.max_consecutive_failures

    def start(self) -> None:
        logger.info("Starting presence poller...")
        self._task.start()

    async def stop(self) -> None:
        logger.info("Stopping presence poller...")
        await self._task.stop()

    async def poll_once(self) -> None:
        """Run one poll, waiting for a scheduled poll in flight."""
        await self._task.run_once()

    async def _poll(self) -> None:
        if not self.rcon_client.is_connected():
            self._record_failure("RCON not connected")
            return

        try:
            player_list = await self.rcon_client.get_players()
        except Exception as e:
            logger.error(f"Error polling player list: {e}", exc_info=True)
            self._record_failure(f"{type(e).__name__}: {e}")
            return

        players = player_list.players
        if not player_list.parsed or not all(isinstance(p, str) for p in players):
            self._record_failure("malformed player list")
            return

        if self._snapshot.consecutive_failures:
            logger.info(
                f"Presence polling recovered after {self._snapshot.consecutive_failures} failures"
            )
        self._snapshot = PresenceSnapshot(
            confirmed_online=frozenset(players),
            consecutive_failures=0,
            last_success_ms=self._clock(),
        )
        logger.debug(f"Poll confirmed {len(players)} online: {sorted(players)}")

    def _record_failure(self, reason: str) -> None:
        failures = self._snapshot.consecutive_failures + 1
        self._snapshot = PresenceSnapshot(
            confirmed_online=self._snapshot.confirmed_online,
            consecutive_failures=failures,
            last_success_ms=self._snapshot.last_success_ms,
        )
        if failures == self.max_consecutive_failures:
            logger.warning(
                f"Presence poller unreliable after {failures} consecutive failures ({reason})"
            )
        else:
            logger.debug(f"Presence poll failed ({failures} in a row): {reason}")
