"""Retry classification: per-handler policy registry and exception-to-outcome mapping."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from app.application.exceptions import HandlerExecutionError
from app.domain.models.event import DEFAULT_POLICY, ExecutionResult, HandlerPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredHandler:
    event_type: type
    handler: Callable[[Any], Any]
    policy: HandlerPolicy
    name: str


class RetryClassifier:
    """
    Registry of handler policies, filled when handlers are registered on the bus.
    Lookups never inspect handlers; everything is resolved from the registry.
    """

    def __init__(self, default_policy: HandlerPolicy = DEFAULT_POLICY) -> None:
        self._default = default_policy
        self._by_handler: Dict[Callable[[Any], Any], RegisteredHandler] = {}
        self._lock = threading.Lock()

    def register(
        self,
        event_type: type,
        handler: Callable[[Any], Any],
        policy: HandlerPolicy,
        name: Optional[str] = None,
    ) -> RegisteredHandler:
        entry = RegisteredHandler(
            event_type=event_type,
            handler=handler,
            policy=policy,
            name=name or getattr(handler, "__qualname__", repr(handler)),
        )
        with self._lock:
            self._by_handler[handler] = entry
        return entry

    def unregister(self, handler: Callable[[Any], Any]) -> None:
        with self._lock:
            self._by_handler.pop(handler, None)

    def handlers_for(self, event_type: type) -> List[RegisteredHandler]:
        mro = set(event_type.__mro__)
        with self._lock:
            return [h for h in self._by_handler.values() if h.event_type in mro]

    def policy_of(self, handler: Callable[[Any], Any]) -> HandlerPolicy:
        with self._lock:
            entry = self._by_handler.get(handler)
        return entry.policy if entry is not None else self._default

    def policy_for(self, event_type: type) -> HandlerPolicy:
        """
        Effective policy for dispatching one event of `event_type`. With several handlers the
        dispatch waits for the slowest declared timeout and is retryable if any handler is.
        """
        handlers = self.handlers_for(event_type)
        if not handlers:
            return self._default
        if len(handlers) == 1:
            return handlers[0].policy
        return HandlerPolicy(
            retryable=any(h.policy.retryable for h in handlers),
            timeout_seconds=max(h.policy.timeout_seconds for h in handlers),
            propagate_exception=any(h.policy.propagate_exception for h in handlers),
        )

    def timeout_for(self, event_type: type) -> float:
        return float(self.policy_for(event_type).timeout_seconds)

    def classify(
        self,
        exc: BaseException,
        handler: Callable[[Any], Any],
        correlation_id: str,
    ) -> ExecutionResult:
        """
        Map a handler exception to an outcome: failure for retryable handlers, success otherwise.
        When the handler declares propagate_exception, raises HandlerExecutionError carrying the
        outcome instead of returning it.
        """
        with self._lock:
            entry = self._by_handler.get(handler)
        policy = entry.policy if entry is not None else self._default
        name = entry.name if entry is not None else getattr(handler, "__qualname__", repr(handler))

        if policy.retryable:
            result = ExecutionResult.failed(correlation_id, exc)
            logger.warning(
                "retryable_handler_failed",
                extra={"correlation_id": correlation_id, "handler": name, "error": str(exc)},
            )
        else:
            result = ExecutionResult.succeeded(correlation_id)
            logger.warning(
                "non_retryable_handler_failed",
                extra={"correlation_id": correlation_id, "handler": name, "error": str(exc)},
            )

        if policy.propagate_exception:
            error = HandlerExecutionError(
                f"Handler {name} failed: {exc}",
                correlation_id=correlation_id,
                handler_name=name,
                result=result,
            )
            raise error from exc
        return result
