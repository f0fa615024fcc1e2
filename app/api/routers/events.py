"""Events API router: GET /events/{event_id} exposes stored delivery state."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_event_system
from app.application.event_system import EventSystem
from app.domain.models.event import StoredEvent
from app.domain.schemas.event import StoredEventResponse

router = APIRouter()


def _to_response(stored: StoredEvent) -> StoredEventResponse:
    return StoredEventResponse(
        id=stored.id,
        event_type=stored.type,
        status=stored.status,
        attempts=stored.attempts,
        max_attempts=stored.max_attempts,
        next_attempt_at=stored.next_attempt_at,
        created_at=stored.created_at,
        last_error=stored.last_error,
    )


@router.get("/{event_id}", response_model=StoredEventResponse)
async def get_event(
    event_id: int,
    event_system: Annotated[EventSystem, Depends(get_event_system)],
):
    """Get stored status, attempts and next attempt time of one event."""
    stored = await event_system.get_event(event_id)
    if stored is None:
        return JSONResponse(status_code=404, content={"detail": "Event not found"})
    return _to_response(stored)
