"""Log file monitoring using watchfiles."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import aiofiles
from aiofiles import os as aioos
from watchfiles import Change, awatch

from ..logger import logger
from .parser import LogEntry, LogEntryKind, LogParser

if TYPE_CHECKING:
    from ..players.session_tracker import SessionTracker


class LogMonitor:
    """Tails the server log and feeds join/leave lines to the session tracker."""

    def __init__(self, session_tracker: "SessionTracker", log_parser: LogParser):
        """Initialize log monitor.

        Args:
            session_tracker: Receives player_joined / player_left calls
            log_parser: Log parser for parsing log lines
        """
        self.session_tracker = session_tracker
        self.log_parser = log_parser

        self._file_pointer = 0
        self._watch_task: Optional[asyncio.Task] = None
        self._stop_flag = False

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def watch(self, log_path: Path) -> None:
        """Start tailing a log file from its current end.

        Args:
            log_path: Path to the log file (typically logs/latest.log)
        """
        if self.watching:
            logger.warning(f"Already watching {log_path}")
            return

        # watchfiles reports absolute paths
        log_path = Path(log_path).resolve()
        self._stop_flag = False
        self._file_pointer = await self._initial_position(log_path)
        self._watch_task = asyncio.create_task(self._watch_loop(log_path))
        logger.info(f"Started watching log file {log_path}")

    async def stop(self) -> None:
        self._stop_flag = True
        if self._watch_task is None:
            return

        self._watch_task.cancel()
        try:
            await self._watch_task
        except asyncio.CancelledError:
            pass
        self._watch_task = None
        logger.info("Stopped log monitoring")

    async def _initial_position(self, log_path: Path) -> int:
        if await aioos.path.exists(log_path):
            size = await aioos.path.getsize(log_path)
            logger.info(f"Log file found, size: {size}")
            return size
        logger.info("Log file not found, will start from beginning when created")
        return 0

    async def _watch_loop(self, log_path: Path) -> None:
        # wait for the log file to be created
        while not await aioos.path.exists(log_path):
            if self._stop_flag:
                return
            await asyncio.sleep(1)

        try:
            async for changes in awatch(log_path.parent):
                if self._stop_flag:
                    break

                for change_type, changed_path in changes:
                    if Path(changed_path) != log_path:
                        continue

                    if change_type == Change.deleted:
                        logger.info("Log file deleted")
                        continue

                    if change_type == Change.added:
                        logger.info("Log file created")
                        self._file_pointer = 0
                    await self.process_log_changes(log_path)

        except asyncio.CancelledError:
            logger.debug("Log watch loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in log watch loop: {e}", exc_info=True)

    async def process_log_changes(self, log_path: Path) -> None:
        """Read lines appended since the last call and apply them."""
        try:
            if not await aioos.path.exists(log_path):
                return

            current_size = await aioos.path.getsize(log_path)
            last_position = self._file_pointer

            # Truncated or rotated
            if current_size < last_position:
                logger.info("Log file truncated, reading from beginning")
                last_position = 0

            if current_size <= last_position:
                return

            async with aiofiles.open(
                log_path, "r", encoding="utf-8", errors="ignore"
            ) as f:
                await f.seek(last_position)
                new_content = await f.read()
                self._file_pointer = await f.tell()

            for line in new_content.splitlines():
                line = line.strip()
                if not line:
                    continue
                entry = self.log_parser.parse_line(line)
                if entry:
                    await self._apply(entry)

        except Exception as e:
            logger.error(f"Error processing log changes: {e}", exc_info=True)

    async def _apply(self, entry: LogEntry) -> None:
        match entry.kind:
            case LogEntryKind.JOINED:
                await self.session_tracker.player_joined(entry.player_name)
            case LogEntryKind.LEFT:
                await self.session_tracker.player_left(entry.player_name, entry.reason)
