"""FastAPI dependency injection: event system."""

from fastapi import Request

from app.application.event_system import EventSystem


def get_event_system(request: Request) -> EventSystem:
    """Return the event system created by the application lifespan."""
    return request.app.state.event_system
