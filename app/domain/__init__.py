"""Domain layer: stored-event model, backoff policy, schemas, exceptions. Pure logic only."""

from app.domain.backoff import BackoffScheduler, RetryDecision
from app.domain.exceptions import (
    DomainError,
    InvalidAttemptsError,
    InvalidStatusTransitionError,
)
from app.domain.models import (
    EventStatus,
    ExecutionResult,
    HandlerPolicy,
    StoredEvent,
)
from app.domain.schemas import GenericEvent, StoredEventResponse

__all__ = [
    "BackoffScheduler",
    "DomainError",
    "EventStatus",
    "ExecutionResult",
    "GenericEvent",
    "HandlerPolicy",
    "InvalidAttemptsError",
    "InvalidStatusTransitionError",
    "RetryDecision",
    "StoredEvent",
    "StoredEventResponse",
]
