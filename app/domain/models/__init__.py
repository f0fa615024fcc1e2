"""Domain models. Pure delivery entities."""

from app.domain.models.event import (
    DEFAULT_POLICY,
    EventStatus,
    ExecutionResult,
    HandlerPolicy,
    StoredEvent,
    validate_transition,
)

__all__ = [
    "DEFAULT_POLICY",
    "EventStatus",
    "ExecutionResult",
    "HandlerPolicy",
    "StoredEvent",
    "validate_transition",
]
