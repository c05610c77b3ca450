"""Durable account and session store.

Every method opens its own database session and commits before returning, so
a crash never loses an acknowledged write.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from ..logger import logger
from ..models import AccountPublic
from ..utils.time import datetime_to_ms, ms_to_datetime
from . import crud
from .database import create_engine, create_session_factory, init_db


class SessionStore:
    """Async facade over the account table."""

    def __init__(self, database_url: str, engine: Optional[AsyncEngine] = None):
        """Initialize session store.

        Args:
            database_url: SQLAlchemy URL, sqlite:/// URLs use aiosqlite
            engine: Pre-built engine, mainly for tests
        """
        self.database_url = database_url
        self._engine = engine or create_engine(database_url)
        self._session_factory = create_session_factory(self._engine)
        self._closed = False

    async def init(self) -> None:
        await init_db(self._engine)
        logger.info(f"Session store ready ({self.database_url})")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._engine.dispose()
        logger.info("Session store closed")

    async def upsert_account(
        self, identifier: str, display_name: str, now_ms: int
    ) -> AccountPublic:
        async with self._session_factory() as session:
            await crud.upsert_account(
                session, identifier, display_name, ms_to_datetime(now_ms)
            )
            account = await crud.get_account_by_identifier(session, identifier)
            assert account is not None
            return AccountPublic.from_orm_account(account)

    async def open_session(self, identifier: str, now_ms: int) -> bool:
        async with self._session_factory() as session:
            return await crud.start_session(
                session, identifier, now_ms, ms_to_datetime(now_ms)
            )

    async def refresh_last_seen(self, identifier: str, now_ms: int) -> None:
        async with self._session_factory() as session:
            await crud.update_last_seen(session, identifier, ms_to_datetime(now_ms))

    async def close_session(
        self,
        identifier: str,
        now_ms: int,
        expected_start_ms: Optional[int] = None,
    ) -> Optional[int]:
        """Close the open session of an account.

        Args:
            identifier: Account identifier
            now_ms: Session end (epoch ms)
            expected_start_ms: Leave a session that started at another time open

        Returns:
            Elapsed milliseconds, or None if there was nothing to close
        """
        async with self._session_factory() as session:
            return await crud.end_session(
                session, identifier, now_ms, ms_to_datetime(now_ms), expected_start_ms
            )

    async def get_account_by_identifier(
        self, identifier: str
    ) -> Optional[AccountPublic]:
        async with self._session_factory() as session:
            account = await crud.get_account_by_identifier(session, identifier)
            return AccountPublic.from_orm_account(account) if account else None

    async def get_account_by_name(self, display_name: str) -> Optional[AccountPublic]:
        async with self._session_factory() as session:
            account = await crud.get_account_by_name(session, display_name)
            return AccountPublic.from_orm_account(account) if account else None

    async def get_stale_open_sessions(
        self, timeout_ms: int, now_ms: int
    ) -> List[AccountPublic]:
        cutoff = ms_to_datetime(now_ms) - timedelta(milliseconds=timeout_ms)
        async with self._session_factory() as session:
            accounts = await crud.get_stale_open_sessions(session, cutoff)
            return [AccountPublic.from_orm_account(a) for a in accounts]

    async def get_open_sessions(self) -> List[AccountPublic]:
        async with self._session_factory() as session:
            accounts = await crud.get_open_sessions(session)
            return [AccountPublic.from_orm_account(a) for a in accounts]

    async def get_all_accounts(self) -> List[AccountPublic]:
        async with self._session_factory() as session:
            accounts = await crud.get_all_accounts(session)
            return [AccountPublic.from_orm_account(a) for a in accounts]

    async def count_accounts(self) -> int:
        async with self._session_factory() as session:
            return await crud.count_accounts(session)

    async def get_heartbeat_ms(self) -> Optional[int]:
        async with self._session_factory() as session:
            timestamp = await crud.get_heartbeat(session)
            return datetime_to_ms(timestamp) if timestamp else None

    async def upsert_heartbeat(self, now_ms: int) -> None:
        async with self._session_factory() as session:
            await crud.upsert_heartbeat(session, ms_to_datetime(now_ms))
