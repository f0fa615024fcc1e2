# Application layer: delivery engine that orchestrates domain and infrastructure.

from app.application.event_store import EventStore
from app.application.exceptions import (
    ApplicationError,
    CorrelationTimeoutError,
    DeserializationError,
    HandlerExecutionError,
    PersistenceError,
    SerializationError,
)
from app.application.subscriber import subscribe

__all__ = [
    "EventStore",
    "subscribe",
    "ApplicationError",
    "CorrelationTimeoutError",
    "DeserializationError",
    "HandlerExecutionError",
    "PersistenceError",
    "SerializationError",
]
