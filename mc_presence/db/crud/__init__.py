"""CRUD operations for the presence store."""

from .account import (
    count_accounts,
    end_session,
    get_account_by_identifier,
    get_account_by_name,
    get_all_accounts,
    get_open_sessions,
    get_stale_open_sessions,
    start_session,
    update_last_seen,
    upsert_account,
)
from .heartbeat import get_heartbeat, upsert_heartbeat

__all__ = [
    # Heartbeat
    "upsert_heartbeat",
    "get_heartbeat",
    # Account
    "upsert_account",
    "get_account_by_identifier",
    "get_account_by_name",
    "get_all_accounts",
    "count_accounts",
    # Session
    "start_session",
    "update_last_seen",
    "end_session",
    "get_open_sessions",
    "get_stale_open_sessions",
]
