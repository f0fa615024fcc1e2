# app/api/routers/health.py

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_event_system
from app.application.event_system import EventSystem
from app.config.settings import get_settings
from app.domain.schemas.event import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(event_system: Annotated[EventSystem, Depends(get_event_system)]):
    """Health check with poller state, stored events per status and delivery counters."""
    settings = get_settings()
    counts = await event_system.store.count_by_status()
    return HealthResponse(
        status="ok",
        environment=settings.environment,
        version=settings.version,
        poller_state=event_system.poller_state.value,
        events_by_status={status.value: count for status, count in counts.items()},
        metrics=event_system.metrics.export_metrics()["counters"],
    )
