"""CRUD operations for Account model."""
# flake8: noqa: E711

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Account


async def upsert_account(
    session: AsyncSession, identifier: str, display_name: str, timestamp: datetime
) -> None:
    """Insert account or update its display name and last seen.

    Args:
        session: Database session
        identifier: Stable account identifier
        display_name: Last known display name
        timestamp: Current time, used as first seen on insert
    """
    stmt = insert(Account).values(
        identifier=identifier,
        display_name=display_name,
        first_seen=timestamp,
        last_seen=timestamp,
        total_playtime_ms=0,
        session_count=0,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["identifier"],
        set_={"display_name": display_name, "last_seen": timestamp},
    )
    await session.execute(stmt)
    await session.commit()


async def get_account_by_identifier(
    session: AsyncSession, identifier: str
) -> Optional[Account]:
    result = await session.execute(
        select(Account).where(Account.identifier == identifier)
    )
    return result.scalar_one_or_none()


async def get_account_by_name(
    session: AsyncSession, display_name: str
) -> Optional[Account]:
    """Get account by display name.

    Display names can move between accounts over time, so the most recently
    seen holder of the name wins.

    Args:
        session: Database session
        display_name: Display name

    Returns:
        Account or None if not found
    """
    result = await session.execute(
        select(Account)
        .where(Account.display_name == display_name)
        .order_by(Account.last_seen.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def start_session(
    session: AsyncSession, identifier: str, session_start_ms: int, timestamp: datetime
) -> bool:
    """Open a session on the account and count it.

    Args:
        session: Database session
        identifier: Account identifier
        session_start_ms: Session start (epoch ms)
        timestamp: Last seen timestamp

    Returns:
        False if the account does not exist
    """
    result = await session.execute(
        update(Account)
        .where(Account.identifier == identifier)
        .values(
            current_session_start=session_start_ms,
            session_count=Account.session_count + 1,
            last_seen=timestamp,
        )
    )
    await session.commit()
    return result.rowcount > 0


async def update_last_seen(
    session: AsyncSession, identifier: str, timestamp: datetime
) -> None:
    await session.execute(
        update(Account)
        .where(Account.identifier == identifier)
        .values(last_seen=timestamp)
    )
    await session.commit()


async def end_session(
    session: AsyncSession,
    identifier: str,
    end_ms: int,
    timestamp: datetime,
    expected_start_ms: Optional[int] = None,
) -> Optional[int]:
    """Close the open session and add its duration to the total playtime.

    The update only matches a row that still has an open session, so two
    concurrent closes credit the session once.

    Args:
        session: Database session
        identifier: Account identifier
        end_ms: Session end (epoch ms)
        timestamp: Last seen timestamp
        expected_start_ms: Only close the session if it started at this time

    Returns:
        Session duration in milliseconds, or None if no matching session was open
    """
    account = await get_account_by_identifier(session, identifier)
    if account is None or account.current_session_start is None:
        return None
    if (
        expected_start_ms is not None
        and account.current_session_start != expected_start_ms
    ):
        return None

    session_start = account.current_session_start
    duration = max(0, end_ms - session_start)

    result = await session.execute(
        update(Account)
        .where(
            Account.identifier == identifier,
            Account.current_session_start == session_start,
        )
        .values(
            total_playtime_ms=Account.total_playtime_ms + duration,
            current_session_start=None,
            last_seen=timestamp,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    if result.rowcount == 0:
        return None
    return duration


async def get_open_sessions(session: AsyncSession) -> List[Account]:
    result = await session.execute(
        select(Account).where(Account.current_session_start != None)
    )
    return list(result.scalars().all())


async def get_stale_open_sessions(
    session: AsyncSession, cutoff: datetime
) -> List[Account]:
    """Get accounts with an open session whose last seen is older than cutoff.

    Args:
        session: Database session
        cutoff: Last seen timestamps strictly before this are stale

    Returns:
        List of stale accounts, oldest first
    """
    result = await session.execute(
        select(Account)
        .where(
            Account.current_session_start != None,
            Account.last_seen < cutoff,
        )
        .order_by(Account.last_seen)
    )
    return list(result.scalars().all())


async def get_all_accounts(session: AsyncSession) -> List[Account]:
    result = await session.execute(
        select(Account).order_by(Account.total_playtime_ms.desc())
    )
    return list(result.scalars().all())


async def count_accounts(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Account))
    return result.scalar_one()
