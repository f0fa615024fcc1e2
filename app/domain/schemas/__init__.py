"""Domain schemas. Event payload fallback and response models."""

from app.domain.schemas.event import GenericEvent, HealthResponse, StoredEventResponse

__all__ = [
    "GenericEvent",
    "HealthResponse",
    "StoredEventResponse",
]
