"""
Remote console (RCON) client for the game server.

Used to poll the online player list; reconnects on its own after drops.
"""

from .client import CommandResult, ConnectionStatus, PlayerList, RconClient
from .protocol import RconAuthError, RconError

__all__ = [
    "RconClient",
    "CommandResult",
    "ConnectionStatus",
    "PlayerList",
    "RconError",
    "RconAuthError",
]
