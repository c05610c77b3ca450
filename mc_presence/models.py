from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class TZDatetime(TypeDecorator):
    """Custom DateTime type that ensures timezone-aware datetimes."""

    impl = DateTime(timezone=True)

    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError(
                "Naive datetime is not allowed. Please provide a timezone-aware datetime."
            )
        # SQLite stores the wall clock only, keep everything in UTC so that
        # string comparison in range queries stays correct
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(AsyncAttrs, DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models with async support."""

    pass


class Account(Base):
    """A player account with its embedded session and playtime state.

    ``current_session_start`` is the open session: NULL means no session.
    Keeping it on the account row makes a second concurrent open session
    unrepresentable.
    """

    __tablename__ = "account"

    account_db_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(32), index=True)
    first_seen: Mapped[datetime] = mapped_column(TZDatetime())
    last_seen: Mapped[datetime] = mapped_column(TZDatetime(), index=True)
    total_playtime_ms: Mapped[int] = mapped_column(BigInteger, default=0)
    session_count: Mapped[int] = mapped_column(Integer, default=0)
    # Epoch milliseconds
    current_session_start: Mapped[Optional[int]] = mapped_column(BigInteger)


class SystemHeartbeat(Base):
    """System heartbeat table for crash detection.

    This table only contains one record that is updated on each heartbeat.
    """

    __tablename__ = "system_heartbeat"

    id: Mapped[int] = mapped_column(primary_key=True, default=1)
    timestamp: Mapped[datetime] = mapped_column(
        TZDatetime(), default=lambda: datetime.now(timezone.utc)
    )


# Pydantic models exposed to API/console collaborators


class AccountPublic(BaseModel):
    """Account snapshot detached from the database session."""

    identifier: str
    display_name: str
    first_seen: datetime
    last_seen: datetime
    total_playtime_ms: int
    session_count: int
    session_start_ms: Optional[int] = None

    @classmethod
    def from_orm_account(cls, account: Account) -> "AccountPublic":
        return cls(
            identifier=account.identifier,
            display_name=account.display_name,
            first_seen=account.first_seen,
            last_seen=account.last_seen,
            total_playtime_ms=account.total_playtime_ms,
            session_count=account.session_count,
            session_start_ms=account.current_session_start,
        )


class AccountStats(AccountPublic):
    """Account statistics including the ongoing session."""

    online: bool
    current_session_ms: int
    total_playtime_formatted: str


class WatchdogConfig(BaseModel):
    heartbeat_interval_ms: int
    session_timeout_ms: int
    poll_interval_ms: int
    max_consecutive_failures: int
    poller_reliable: bool
    consecutive_failures: int
