"""DB-backed event store. Persists events to the `events` table and drives the delivery state machine."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.application.exceptions import PersistenceError
from app.domain.models.event import EventStatus, StoredEvent
from app.infrastructure.database.models import EventRecord

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 60.0

_events = EventRecord.__table__
_COLUMNS = (
    _events.c.id,
    _events.c.event_type,
    _events.c.payload,
    _events.c.status,
    _events.c.attempts,
    _events.c.max_attempts,
    _events.c.next_attempt_at,
    _events.c.created_at,
    _events.c.leased_until,
    _events.c.last_error,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_stored(row) -> StoredEvent:
    return StoredEvent(
        id=row.id,
        type=row.event_type,
        payload=row.payload,
        status=EventStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        next_attempt_at=_aware(row.next_attempt_at),
        created_at=_aware(row.created_at),
        leased_until=_aware(row.leased_until),
        last_error=row.last_error,
    )


class DbEventStore:
    """
    Implements the EventStore protocol on an async SQLAlchemy session factory.
    fetch_due is a claim: rows are locked (SKIP LOCKED on PostgreSQL) and leased in one
    statement, so concurrent fetch cycles never hand out the same row twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f"{operation} failed: {e}") from e

    async def append(self, event_type: str, payload: str, max_attempts: int) -> int:
        """Insert a PENDING event due now; return its id."""
        now = self._clock()
        stmt = (
            insert(_events)
            .values(
                event_type=event_type,
                payload=payload,
                status=EventStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts,
                next_attempt_at=now,
                created_at=now,
            )
            .returning(_events.c.id)
        )
        async with self._transaction("append") as session:
            result = await session.execute(stmt)
            event_id = result.scalar_one()
        logger.debug(
            "event_appended",
            extra={"event_id": event_id, "event_type": event_type, "max_attempts": max_attempts},
        )
        return event_id

    async def fetch_due(self, limit: int) -> List[StoredEvent]:
        """Claim up to `limit` due PENDING events ordered by created_at; lease them for lease_seconds."""
        now = self._clock()
        due = (
            select(_events.c.id)
            .where(
                _events.c.status == EventStatus.PENDING.value,
                _events.c.next_attempt_at <= now,
                or_(_events.c.leased_until.is_(None), _events.c.leased_until <= now),
            )
            .order_by(_events.c.created_at, _events.c.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(_events)
            .where(_events.c.id.in_(due))
            .values(leased_until=now + self._lease)
            .returning(*_COLUMNS)
        )
        async with self._transaction("fetch_due") as session:
            rows = (await session.execute(stmt)).all()
        # RETURNING order is unspecified.
        events = sorted((_row_to_stored(r) for r in rows), key=lambda e: (e.created_at, e.id))
        return events

    async def mark_success(self, event_id: int) -> None:
        """Set SUCCESS. A terminal row is left untouched, so repeating this is a no-op."""
        stmt = (
            update(_events)
            .where(
                _events.c.id == event_id,
                _events.c.status == EventStatus.PENDING.value,
            )
            .values(status=EventStatus.SUCCESS.value, leased_until=None, last_error=None)
        )
        async with self._transaction("mark_success") as session:
            result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.debug("mark_success_noop", extra={"event_id": event_id})

    async def mark_failed(
        self,
        event_id: int,
        attempts: int,
        backoff_ms: int,
        error: Optional[str] = None,
    ) -> None:
        """
        Record a failed attempt. Non-zero backoff keeps the row PENDING and due again after
        backoff_ms; zero backoff is a terminal failure and moves the row to FAILED.
        """
        values = {"attempts": attempts, "leased_until": None, "last_error": error}
        if backoff_ms == 0:
            values["status"] = EventStatus.FAILED.value
        else:
            values["next_attempt_at"] = self._clock() + timedelta(milliseconds=backoff_ms)
        stmt = (
            update(_events)
            .where(
                and_(
                    _events.c.id == event_id,
                    _events.c.status == EventStatus.PENDING.value,
                    _events.c.max_attempts >= attempts,
                )
            )
            .values(**values)
        )
        async with self._transaction("mark_failed") as session:
            result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                "mark_failed_noop",
                extra={"event_id": event_id, "attempts": attempts, "backoff_ms": backoff_ms},
            )

    async def get(self, event_id: int) -> Optional[StoredEvent]:
        stmt = select(*_COLUMNS).where(_events.c.id == event_id)
        async with self._transaction("get") as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None
        return _row_to_stored(row)

    async def count_by_status(self) -> Dict[EventStatus, int]:
        stmt = select(_events.c.status, func.count()).group_by(_events.c.status)
        async with self._transaction("count_by_status") as session:
            rows = (await session.execute(stmt)).all()
        counts = {status: 0 for status in EventStatus}
        for status, count in rows:
            counts[EventStatus(status)] = count
        return counts
