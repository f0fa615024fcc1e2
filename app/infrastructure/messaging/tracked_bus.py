"""Completion-tracking wrapper around LocalEventBus. Same register/post contract plus outcome reporting."""

import functools
import logging
from typing import Any, Callable, Dict, List, Tuple

from app.application.correlator import CompletionCorrelator
from app.application.retry_classifier import RetryClassifier
from app.application.subscriber import HandlerRegistration, discover_handlers
from app.infrastructure.messaging.local_bus import LocalEventBus

logger = logging.getLogger(__name__)


class TrackedEventBus:
    """
    Composes a LocalEventBus. register() records each declared handler's policy in the
    RetryClassifier and hands the primitive a wrapper that reports normal completion to the
    correlator; failures travel through the primitive's exception handler instead.
    post() only forwards: a returned post() says nothing about handler outcome.
    """

    def __init__(
        self,
        delegate: LocalEventBus,
        correlator: CompletionCorrelator,
        classifier: RetryClassifier,
    ) -> None:
        self._delegate = delegate
        self._correlator = correlator
        self._classifier = classifier
        self._wrappers: Dict[Tuple[type, Callable[[Any], Any]], Callable[[Any], Any]] = {}

    def register(self, listener: Any) -> List[HandlerRegistration]:
        """Register every `@subscribe` handler of `listener` (a decorated function or an object)."""
        registrations = discover_handlers(listener)
        if not registrations:
            raise ValueError(f"{listener!r} declares no @subscribe handlers")
        for registration in registrations:
            key = (registration.event_type, registration.handler)
            if key in self._wrappers:
                continue
            wrapper = self._track(registration)
            self._wrappers[key] = wrapper
            self._classifier.register(
                registration.event_type, wrapper, registration.policy, registration.name
            )
            self._delegate.register(registration.event_type, wrapper)
            logger.info(
                "handler_registered",
                extra={
                    "handler": registration.name,
                    "event_type": registration.event_type.__name__,
                    "retryable": registration.policy.retryable,
                    "timeout_seconds": registration.policy.timeout_seconds,
                },
            )
        return registrations

    def unregister(self, listener: Any) -> None:
        for registration in discover_handlers(listener):
            wrapper = self._wrappers.pop((registration.event_type, registration.handler), None)
            if wrapper is None:
                continue
            self._delegate.unregister(registration.event_type, wrapper)
            self._classifier.unregister(wrapper)

    def post(self, event: Any) -> None:
        """Forward `event` to the primitive. An event nobody subscribes to is complete at once."""
        if self._delegate.post(event) == 0:
            logger.debug("dead_event", extra={"event_type": type(event).__name__})
            self._correlator.report_success(self._correlator.correlation_id_for(event))

    def _track(self, registration: HandlerRegistration) -> Callable[[Any], Any]:
        handler = registration.handler
        correlator = self._correlator

        if registration.is_async:

            @functools.wraps(handler)
            async def tracked_async(event: Any) -> None:
                await handler(event)
                correlator.report_success(correlator.correlation_id_for(event))

            return tracked_async

        @functools.wraps(handler)
        def tracked(event: Any) -> None:
            handler(event)
            correlator.report_success(correlator.correlation_id_for(event))

        return tracked
