"""Domain model for stored events and delivery outcomes. Pure semantics, no ORM or infrastructure."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from app.domain.exceptions import InvalidAttemptsError, InvalidStatusTransitionError

DEFAULT_TIMEOUT_SECONDS = 5
DEFAULT_MAX_ATTEMPTS = 5


class EventStatus(str, Enum):
    """Delivery status of a stored event. SUCCESS and FAILED are terminal."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.SUCCESS, EventStatus.FAILED)

    def can_transition_to(self, new: "EventStatus") -> bool:
        return new in _STATUS_TRANSITIONS.get(self, frozenset())


# PENDING -> PENDING is a rescheduled retry.
_STATUS_TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.PENDING: frozenset({EventStatus.PENDING, EventStatus.SUCCESS, EventStatus.FAILED}),
    EventStatus.SUCCESS: frozenset(),
    EventStatus.FAILED: frozenset(),
}


def validate_transition(current: EventStatus, new: EventStatus) -> None:
    """Raise InvalidStatusTransitionError if current -> new is not allowed."""
    if not current.can_transition_to(new):
        raise InvalidStatusTransitionError(
            f"Invalid status transition from {current.value} to {new.value}"
        )


@dataclass(frozen=True)
class StoredEvent:
    """A persisted event row as seen by the delivery engine."""

    id: int
    type: str
    payload: str
    status: EventStatus
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    created_at: datetime
    leased_until: Optional[datetime] = None
    last_error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.attempts < 0 or self.attempts > self.max_attempts:
            raise InvalidAttemptsError(
                f"attempts={self.attempts} outside 0..max_attempts={self.max_attempts}"
            )

    def is_due(self, now: datetime) -> bool:
        if self.status != EventStatus.PENDING or self.next_attempt_at > now:
            return False
        return self.leased_until is None or self.leased_until <= now


@dataclass(frozen=True)
class HandlerPolicy:
    """Delivery policy declared by a handler. Derived at registration, never persisted."""

    retryable: bool = False
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    propagate_exception: bool = False


DEFAULT_POLICY = HandlerPolicy()


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome reported for one dispatch, keyed by correlation id."""

    correlation_id: str
    success: bool
    error: Optional[BaseException] = None

    @classmethod
    def succeeded(cls, correlation_id: str) -> "ExecutionResult":
        return cls(correlation_id=correlation_id, success=True)

    @classmethod
    def failed(cls, correlation_id: str, error: BaseException) -> "ExecutionResult":
        return cls(correlation_id=correlation_id, success=False, error=error)

    @property
    def error_detail(self) -> Optional[str]:
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"
