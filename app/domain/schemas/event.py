"""Pydantic schemas for event payloads and the inspection API. No DB or infrastructure."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.domain.models.event import EventStatus


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------

class GenericEvent(BaseModel):
    """
    Structural fallback for a stored payload whose type cannot be resolved at replay time.
    Handlers can subscribe to GenericEvent to receive undecodable events.
    """

    type: str = Field(..., description="Stored type discriminator that failed to resolve")
    data: Any = None
    raw: Optional[str] = Field(None, description="Raw payload when it is not valid JSON")

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class StoredEventResponse(BaseModel):
    """Delivery state of one stored event, as exposed by GET /events/{id}."""

    id: int
    event_type: str
    status: EventStatus
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    created_at: datetime
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class HealthResponse(BaseModel):
    status: str
    environment: str
    version: str
    poller_state: str
    events_by_status: Dict[str, int] = Field(default_factory=dict)
    metrics: Dict[str, Any] = Field(default_factory=dict)
