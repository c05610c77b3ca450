"""
Player presence tracking.

Resolves player identities, polls who is online, and tracks sessions and
cumulative playtime.
"""

from .identity import IdentityResolver, MojangIdentityResolver
from .manager import PresenceSystemManager
from .poller import PresencePoller, PresenceSnapshot
from .session_tracker import ActiveSessionEntry, SessionTracker

__all__ = [
    "ActiveSessionEntry",
    "IdentityResolver",
    "MojangIdentityResolver",
    "PresencePoller",
    "PresenceSnapshot",
    "PresenceSystemManager",
    "SessionTracker",
]
