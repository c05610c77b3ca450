"""CRUD operations for the system heartbeat row."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import SystemHeartbeat

HEARTBEAT_ROW_ID = 1


async def get_heartbeat(session: AsyncSession) -> Optional[datetime]:
    """Get the last heartbeat timestamp, or None before the first tick."""
    result = await session.execute(
        select(SystemHeartbeat.timestamp).where(
            SystemHeartbeat.id == HEARTBEAT_ROW_ID
        )
    )
    return result.scalar_one_or_none()


async def upsert_heartbeat(session: AsyncSession, timestamp: datetime) -> None:
    """Write the heartbeat, keeping a single row."""
    stmt = insert(SystemHeartbeat).values(id=HEARTBEAT_ROW_ID, timestamp=timestamp)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={"timestamp": timestamp},
    )
    await session.execute(stmt)
    await session.commit()
