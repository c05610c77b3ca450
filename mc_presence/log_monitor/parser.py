"""Log parser for Minecraft server join/leave lines."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..config import LogMonitorSettings
from ..logger import logger


class LogEntryKind(str, Enum):
    JOINED = "joined"
    LEFT = "left"


@dataclass(frozen=True)
class LogEntry:
    kind: LogEntryKind
    player_name: str
    reason: str = ""


class LogParser:
    """Parses Minecraft server log lines into join/leave entries."""

    def __init__(self, log_monitor_settings: Optional[LogMonitorSettings] = None):
        settings = log_monitor_settings or LogMonitorSettings()
        self.join_pattern = re.compile(settings.join_pattern)
        self.leave_pattern = re.compile(settings.leave_pattern)

    def parse_line(self, line: str) -> Optional[LogEntry]:
        """Parse a log line.

        Args:
            line: Log line to parse

        Returns:
            Parsed entry or None if the line is neither a join nor a leave
        """
        match = self.join_pattern.search(line)
        if match and len(match.groups()) >= 1:
            player_name = match.group(1)
            if player_name:
                logger.info(f"Parsed player join: {player_name}")
                return LogEntry(LogEntryKind.JOINED, player_name)
            logger.warning(f"Failed to extract join info from line (empty group): {line}")

        match = self.leave_pattern.search(line)
        if match and len(match.groups()) >= 1:
            player_name = match.group(1)
            if player_name:
                reason = (match.group(2) if len(match.groups()) >= 2 else None) or ""
                logger.info(f"Parsed player leave: {player_name}, reason: {reason}")
                return LogEntry(LogEntryKind.LEFT, player_name, reason)
            logger.warning(f"Failed to extract leave info from line (empty group): {line}")

        return None
