"""Per-event delivery protocol: decode, correlate, post, await the outcome, record it in the store."""

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from app.application.correlator import (
    CompletionCorrelator,
    DispatchContext,
    build_correlation_id,
)
from app.application.event_store import EventStore
from app.application.exceptions import (
    CorrelationTimeoutError,
    DeserializationError,
    PersistenceError,
)
from app.config.settings import TimeoutPolicy
from app.core.context import correlation_id_ctx, event_id_ctx
from app.domain.backoff import BackoffScheduler
from app.domain.models.event import ExecutionResult, StoredEvent
from app.infrastructure.serialization.codec import EventCodec
from app.observability import metrics as m
from app.observability.metrics import MetricsCollector

if TYPE_CHECKING:
    from app.infrastructure.messaging.tracked_bus import TrackedEventBus

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Delivers one claimed StoredEvent. Never raises for handler or store failures: handler
    outcomes become store updates, store failures are logged and the lease brings the row back.
    """

    def __init__(
        self,
        store: EventStore,
        bus: "TrackedEventBus",
        correlator: CompletionCorrelator,
        codec: EventCodec,
        backoff: BackoffScheduler,
        on_timeout: TimeoutPolicy = TimeoutPolicy.RETRY,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._correlator = correlator
        self._codec = codec
        self._backoff = backoff
        self._on_timeout = on_timeout
        self._metrics = metrics or MetricsCollector()

    async def process(self, stored: StoredEvent) -> ExecutionResult:
        event_id_ctx.set(stored.id)
        event = self._decode(stored)
        correlation_id = build_correlation_id(event, stored.id, stored.attempts + 1)
        correlation_id_ctx.set(correlation_id)

        started = time.monotonic()
        context = self._correlator.prepare(correlation_id, type(event))
        try:
            result = await self._dispatch(context, event)
        finally:
            self._correlator.release(correlation_id)
        self._metrics.observe_latency(m.DISPATCH_LATENCY, (time.monotonic() - started) * 1000)

        await self._record(stored, result)
        return result

    def _decode(self, stored: StoredEvent) -> Any:
        try:
            return self._codec.decode(stored.type, stored.payload)
        except DeserializationError as e:
            logger.warning(
                "event_decode_fallback",
                extra={"event_id": stored.id, "event_type": stored.type, "error": e.message},
            )
            return self._codec.generic(stored.type, stored.payload)

    async def _dispatch(self, context: DispatchContext, event: Any) -> ExecutionResult:
        correlation_id = context.correlation_id
        timeout = context.timeout
        try:
            with self._correlator.bound(context):
                self._bus.post(event)
        except Exception as e:
            # post() only raises for transport failures; handler failures never reach here.
            logger.error(
                "event_post_failed",
                exc_info=True,
                extra={"correlation_id": correlation_id, "error": str(e)},
            )
            return ExecutionResult.failed(correlation_id, e)

        try:
            return await self._correlator.wait(correlation_id, timeout)
        except CorrelationTimeoutError as e:
            self._metrics.increment(m.DISPATCH_TIMEOUTS, event_type=type(event).__name__)
            if self._on_timeout == TimeoutPolicy.ASSUME_SUCCESS:
                logger.warning(
                    "dispatch_timeout_assumed_success",
                    extra={"correlation_id": correlation_id, "timeout": timeout},
                )
                return ExecutionResult.succeeded(correlation_id)
            logger.warning(
                "dispatch_timeout_retry",
                extra={"correlation_id": correlation_id, "timeout": timeout},
            )
            return ExecutionResult.failed(correlation_id, e)

    async def _record(self, stored: StoredEvent, result: ExecutionResult) -> None:
        try:
            if result.success:
                await self._store.mark_success(stored.id)
                self._metrics.increment(m.EVENTS_SUCCEEDED, event_type=stored.type)
                logger.info(
                    "event_delivered",
                    extra={"event_id": stored.id, "attempts": stored.attempts},
                )
                return

            decision = self._backoff.next_decision(stored.attempts, stored.max_attempts)
            await self._store.mark_failed(
                stored.id, decision.attempt, decision.backoff_ms, result.error_detail
            )
            if decision.terminal:
                self._metrics.increment(m.EVENTS_FAILED, event_type=stored.type)
                logger.error(
                    "event_failed_permanently",
                    extra={
                        "event_id": stored.id,
                        "attempts": decision.attempt,
                        "error": result.error_detail,
                    },
                )
            else:
                self._metrics.increment(m.EVENTS_RETRIED, event_type=stored.type)
                logger.warning(
                    "event_retry_scheduled",
                    extra={
                        "event_id": stored.id,
                        "attempt": decision.attempt,
                        "max_attempts": stored.max_attempts,
                        "backoff_ms": decision.backoff_ms,
                        "error": result.error_detail,
                    },
                )
        except PersistenceError as e:
            self._metrics.increment(m.STORE_UPDATE_ERRORS)
            logger.error(
                "store_update_failed",
                extra={"event_id": stored.id, "success": result.success, "error": e.message},
            )
