# app/infrastructure/database/models.py

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from app.domain.models.event import DEFAULT_MAX_ATTEMPTS, EventStatus
from app.infrastructure.database.session import Base


class EventRecord(Base):
    """ORM model for the durable event log (one row per published event)."""

    __tablename__ = "events"

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    event_type = Column(String(255), nullable=False)
    payload = Column(Text, nullable=False)
    status = Column(
        String(20),
        nullable=False,
        default=EventStatus.PENDING.value,
        server_default=EventStatus.PENDING.value,
    )
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    max_attempts = Column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
        server_default=str(DEFAULT_MAX_ATTEMPTS),
    )
    next_attempt_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Claim lease: a row whose lease has not expired is in flight and not due.
    leased_until = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_events_status_next_attempt_at", "status", "next_attempt_at"),
    )
