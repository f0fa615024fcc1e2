"""Event system: publish boundary and lifecycle. Persist first, deliver later from the poller."""

import logging
from typing import Any, List, Optional

from app.application.correlator import CompletionCorrelator
from app.application.dispatcher import EventDispatcher
from app.application.event_store import EventStore
from app.application.poller import EventPoller, PollerState
from app.application.retry_classifier import RetryClassifier
from app.application.subscriber import HandlerRegistration
from app.config.settings import AppSettings
from app.domain.backoff import BackoffScheduler
from app.domain.models.event import HandlerPolicy, StoredEvent
from app.infrastructure.messaging.local_bus import LocalEventBus
from app.infrastructure.messaging.tracked_bus import TrackedEventBus
from app.infrastructure.serialization.codec import EventCodec
from app.observability import metrics as m
from app.observability.metrics import MetricsCollector


class EventSystem:
    """
    Orchestration only; storage, bus and codec are injected or built from settings.
    publish() fails synchronously (SerializationError, PersistenceError); everything after
    the row is stored is invisible to the publisher and shows up only in the row's
    status and attempt counters.
    """

    def __init__(
        self,
        store: EventStore,
        settings: AppSettings,
        codec: Optional[EventCodec] = None,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._codec = codec or EventCodec()
        self._metrics = metrics or MetricsCollector()
        self._logger = logger or logging.getLogger(__name__)

        self._classifier = RetryClassifier(
            default_policy=HandlerPolicy(timeout_seconds=settings.default_timeout_seconds)
        )
        self._correlator = CompletionCorrelator(self._classifier)
        self._bus = TrackedEventBus(
            LocalEventBus(exception_handler=self._correlator.handle_exception, name=settings.app_name),
            self._correlator,
            self._classifier,
        )
        self._dispatcher = EventDispatcher(
            store=store,
            bus=self._bus,
            correlator=self._correlator,
            codec=self._codec,
            backoff=BackoffScheduler(settings.base_backoff_ms),
            on_timeout=settings.on_timeout,
            metrics=self._metrics,
        )
        self._poller = EventPoller(
            store=store,
            dispatcher=self._dispatcher,
            poll_interval=settings.poll_interval_seconds,
            batch_size=settings.batch_size,
            concurrency=settings.worker_concurrency,
            metrics=self._metrics,
        )

    @property
    def store(self) -> EventStore:
        return self._store

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def poller(self) -> EventPoller:
        return self._poller

    @property
    def poller_state(self) -> PollerState:
        return self._poller.state

    @property
    def correlator(self) -> CompletionCorrelator:
        return self._correlator

    def register(self, listener: Any) -> List[HandlerRegistration]:
        """Register `@subscribe` handlers; their event types become decodable at replay time."""
        registrations = self._bus.register(listener)
        for registration in registrations:
            if self._codec.supports(registration.event_type):
                self._codec.register_type(registration.event_type)
            if registration.policy.timeout_seconds >= self._settings.lease_seconds:
                self._logger.warning(
                    "handler_timeout_exceeds_lease",
                    extra={
                        "handler": registration.name,
                        "timeout_seconds": registration.policy.timeout_seconds,
                        "lease_seconds": self._settings.lease_seconds,
                    },
                )
        return registrations

    def unregister(self, listener: Any) -> None:
        self._bus.unregister(listener)

    def register_type(self, event_type: type) -> str:
        """Make an event type decodable without subscribing to it."""
        return self._codec.register_type(event_type)

    async def publish(self, event: Any, max_attempts: Optional[int] = None) -> int:
        """Serialize and persist `event` as PENDING. Returns the stored event id."""
        attempts = max_attempts if max_attempts is not None else self._settings.default_max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        event_type, payload = self._codec.encode(event)
        event_id = await self._store.append(event_type, payload, attempts)
        self._metrics.increment(m.EVENTS_PUBLISHED, event_type=event_type)
        self._logger.info(
            "event_published",
            extra={"event_id": event_id, "event_type": event_type, "max_attempts": attempts},
        )
        return event_id

    async def get_event(self, event_id: int) -> Optional[StoredEvent]:
        return await self._store.get(event_id)

    async def start(self) -> None:
        await self._poller.start()

    async def stop(self) -> None:
        await self._poller.stop(self._settings.shutdown_timeout_seconds)
