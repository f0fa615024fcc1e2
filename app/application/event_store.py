"""Event store protocol. Application layer depends on this; infrastructure implements it."""

from typing import Dict, List, Optional, Protocol

from app.domain.models.event import EventStatus, StoredEvent


class EventStore(Protocol):
    """
    Durable record of events and their delivery state. Each update is a single-row
    atomic statement; all methods raise PersistenceError on storage failure.
    """

    async def append(self, event_type: str, payload: str, max_attempts: int) -> int:
        """Insert a PENDING row with attempts 0, due now. Returns the store-assigned id."""
        ...

    async def fetch_due(self, limit: int) -> List[StoredEvent]:
        """Claim up to `limit` due PENDING rows, oldest created_at first."""
        ...

    async def mark_success(self, event_id: int) -> None:
        """Set SUCCESS. Idempotent; never rewrites a terminal row."""
        ...

    async def mark_failed(
        self,
        event_id: int,
        attempts: int,
        backoff_ms: int,
        error: Optional[str] = None,
    ) -> None:
        """Record attempts and reschedule after backoff_ms. backoff_ms == 0 means terminal FAILED."""
        ...

    async def get(self, event_id: int) -> Optional[StoredEvent]:
        """Return the stored event or None."""
        ...

    async def count_by_status(self) -> Dict[EventStatus, int]:
        ...
