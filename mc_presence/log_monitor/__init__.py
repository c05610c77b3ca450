"""
Log monitoring for the presence tracker.

Tails the Minecraft server log and turns join/leave lines into tracker calls.
"""

from .monitor import LogMonitor
from .parser import LogEntry, LogEntryKind, LogParser

__all__ = [
    "LogEntry",
    "LogEntryKind",
    "LogMonitor",
    "LogParser",
]
