"""Polling scheduler: on a fixed period, claim due events and hand them to a bounded worker pool."""

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from app.application.dispatcher import EventDispatcher
from app.application.event_store import EventStore
from app.application.exceptions import PersistenceError
from app.domain.models.event import StoredEvent
from app.observability import metrics as m
from app.observability.metrics import MetricsCollector
from app.scalability.bulkhead import BulkheadExecutor

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


class EventPoller:
    """
    Each tick: IDLE -> FETCHING -> DISPATCHING -> IDLE. A tick does not wait for the workers it
    started, so ticks may overlap with earlier batches. Events already in flight in this process
    are never dispatched twice; the store lease covers other fetchers.
    """

    def __init__(
        self,
        store: EventStore,
        dispatcher: EventDispatcher,
        poll_interval: float = 1.0,
        batch_size: int = 20,
        concurrency: int = 5,
        max_queued: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._pool = BulkheadExecutor(
            max_concurrent=concurrency,
            max_queued=max_queued if max_queued is not None else batch_size,
        )
        self._metrics = metrics or MetricsCollector()
        self._state = PollerState.STOPPED
        self._in_flight: Set[int] = set()
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = True

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the scheduling loop as an asyncio Task. First tick runs immediately."""
        if self.running:
            return
        self._stopped = False
        self._state = PollerState.IDLE
        self._task = asyncio.create_task(self._run(), name="event-poller")
        logger.info(
            "poller_started",
            extra={"poll_interval": self._poll_interval, "batch_size": self._batch_size},
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling, then give in-flight workers up to `timeout` seconds to finish."""
        self._stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._pool.shutdown(timeout)
        self._state = PollerState.STOPPED
        logger.info("poller_stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stopped:
            try:
                await self.tick()
            except Exception:
                # The schedule must survive anything a single tick throws.
                logger.exception("poller_tick_failed")
                self._state = PollerState.IDLE
            next_tick += self._poll_interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind: skip missed ticks instead of firing them back to back.
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def tick(self) -> int:
        """Run one fetch/dispatch cycle. Returns the number of events submitted."""
        self._state = PollerState.FETCHING
        limit = min(self._batch_size, self._pool.free_slots)
        if limit <= 0:
            logger.debug("poller_saturated", extra={"pool_size": self._pool.size})
            self._state = PollerState.IDLE
            return 0
        try:
            events = await self._store.fetch_due(limit)
        except PersistenceError as e:
            self._metrics.increment(m.FETCH_ERRORS)
            logger.error("fetch_due_failed", extra={"error": e.message})
            self._state = PollerState.IDLE
            return 0

        self._state = PollerState.DISPATCHING
        submitted = 0
        for stored in events:
            if stored.id in self._in_flight:
                logger.warning("event_already_in_flight", extra={"event_id": stored.id})
                continue
            self._in_flight.add(stored.id)
            self._pool.submit(self._work, stored, name=f"dispatch-{stored.id}")
            submitted += 1
        if submitted:
            logger.debug("poller_dispatched", extra={"count": submitted})
        self._state = PollerState.IDLE
        return submitted

    async def _work(self, stored: StoredEvent) -> None:
        try:
            await self._dispatcher.process(stored)
        except Exception:
            logger.exception("event_dispatch_crashed", extra={"event_id": stored.id})
        finally:
            self._in_flight.discard(stored.id)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for the workers started so far. Returns False on timeout."""
        return await self._pool.join(timeout)
