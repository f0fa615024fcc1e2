"""Completion correlation: bridges post() to the asynchronous outcome of the handlers it triggered.

Per dispatch the worker calls prepare -> post (inside bound()) -> wait -> release. Handlers report
through report()/handle_exception() from the event loop or from worker threads.
"""

import asyncio
import contextlib
import logging
import threading
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from app.application.exceptions import CorrelationTimeoutError, HandlerExecutionError
from app.application.retry_classifier import RetryClassifier
from app.domain.models.event import ExecutionResult, HandlerPolicy
from app.infrastructure.messaging.local_bus import SubscriberExceptionContext

logger = logging.getLogger(__name__)

_IDENTITY_FIELDS = ("event_id", "id")


def event_identity(event: Any) -> str:
    """Identity field of the in-memory event, else a type+hash composite."""
    for field in _IDENTITY_FIELDS:
        value = getattr(event, field, None)
        if value is not None:
            return str(value)
    try:
        digest = hash(event)
    except TypeError:
        digest = id(event)
    return f"{type(event).__name__}-{digest}"


def build_correlation_id(event: Any, stored_id: int, attempt: int) -> str:
    """Correlation id for one delivery attempt. The generation suffix isolates retries from late signals."""
    return f"{event_identity(event)}@{stored_id}#{attempt}"


class DispatchContext:
    """
    State of one in-flight dispatch: a one-shot completion gate plus a single result slot.
    The gate opens on the first report; later reports overwrite the slot (one slot per
    correlation id, shared by every handler of the event).
    """

    def __init__(
        self,
        correlation_id: str,
        event_type: type,
        policy: HandlerPolicy,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.correlation_id = correlation_id
        self.event_type = event_type
        self.policy = policy
        self._loop = loop
        self._gate: asyncio.Future = loop.create_future()
        self._lock = threading.Lock()
        self._resolved = False
        self._result: Optional[ExecutionResult] = None

    @property
    def timeout(self) -> float:
        return float(self.policy.timeout_seconds)

    @property
    def resolved(self) -> bool:
        with self._lock:
            return self._resolved

    @property
    def result(self) -> Optional[ExecutionResult]:
        with self._lock:
            return self._result

    def signal(self, result: ExecutionResult) -> bool:
        """Store the result and open the gate. Returns True for the report that opened it."""
        with self._lock:
            if self._resolved and self._result is not None and self._result != result:
                logger.warning(
                    "result_overwritten",
                    extra={"correlation_id": self.correlation_id, "success": result.success},
                )
            self._result = result
            first = not self._resolved
            self._resolved = True
        if first:
            self._open_gate()
        return first

    def _open_gate(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._set_gate()
            return
        try:
            self._loop.call_soon_threadsafe(self._set_gate)
        except RuntimeError:
            # Loop already closed: the waiting worker is gone and reads `resolved` if it returns.
            logger.debug("gate_loop_closed", extra={"correlation_id": self.correlation_id})

    def _set_gate(self) -> None:
        if not self._gate.done():
            self._gate.set_result(None)

    def close(self) -> None:
        if not self._gate.done():
            self._gate.cancel()

    async def wait(self, timeout: float) -> bool:
        """Wait for the gate. Re-checks the resolved flag on timeout to close the signal race."""
        try:
            await asyncio.wait_for(asyncio.shield(self._gate), timeout)
            return True
        except asyncio.TimeoutError:
            return self.resolved


_current_dispatch: ContextVar[Optional[DispatchContext]] = ContextVar(
    "current_dispatch", default=None
)


class CompletionCorrelator:
    """Tracks live dispatch contexts by correlation id. Safe across loop tasks and handler threads."""

    def __init__(self, classifier: RetryClassifier) -> None:
        self._classifier = classifier
        self._contexts: Dict[str, DispatchContext] = {}
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._contexts)

    def prepare(self, correlation_id: str, event_type: type) -> DispatchContext:
        """Create the gate for a dispatch about to happen. Must be called on the event loop."""
        context = DispatchContext(
            correlation_id=correlation_id,
            event_type=event_type,
            policy=self._classifier.policy_for(event_type),
            loop=asyncio.get_running_loop(),
        )
        with self._lock:
            if correlation_id in self._contexts:
                logger.warning("correlation_id_reused", extra={"correlation_id": correlation_id})
            self._contexts[correlation_id] = context
        return context

    @contextlib.contextmanager
    def bound(self, context: DispatchContext) -> Iterator[DispatchContext]:
        """Make `context` current while posting, so handler tasks spawned by post() inherit it."""
        token = _current_dispatch.set(context)
        try:
            yield context
        finally:
            _current_dispatch.reset(token)

    def correlation_id_for(self, event: Any) -> str:
        """Correlation id of the dispatch delivering `event`; bare identity outside a dispatch."""
        context = _current_dispatch.get()
        if context is not None:
            return context.correlation_id
        return event_identity(event)

    def get(self, correlation_id: str) -> Optional[DispatchContext]:
        with self._lock:
            return self._contexts.get(correlation_id)

    def report(self, correlation_id: str, result: ExecutionResult) -> bool:
        """Signal the gate for `correlation_id`. A no-op when no gate is registered."""
        context = self.get(correlation_id)
        if context is None:
            logger.debug("signal_without_gate", extra={"correlation_id": correlation_id})
            return False
        context.signal(result)
        return True

    def report_success(self, correlation_id: str) -> bool:
        return self.report(correlation_id, ExecutionResult.succeeded(correlation_id))

    def handle_exception(self, exc: BaseException, context: SubscriberExceptionContext) -> None:
        """Bus exception boundary: classify the handler failure, record it, then signal."""
        correlation_id = self.correlation_id_for(context.event)
        try:
            result = self._classifier.classify(exc, context.handler, correlation_id)
        except HandlerExecutionError as error:
            if error.result is not None:
                self.report(correlation_id, error.result)
            raise
        self.report(correlation_id, result)

    async def wait(self, correlation_id: str, timeout: float) -> ExecutionResult:
        """Outcome of the dispatch; raises CorrelationTimeoutError if nothing was reported in time."""
        context = self.get(correlation_id)
        if context is None:
            raise CorrelationTimeoutError(correlation_id, 0.0)
        if not await context.wait(timeout):
            raise CorrelationTimeoutError(correlation_id, timeout)
        result = context.result
        if result is None:
            raise CorrelationTimeoutError(correlation_id, timeout)
        return result

    def release(self, correlation_id: str) -> None:
        """Drop the dispatch state. Mandatory on every path, after wait()."""
        with self._lock:
            context = self._contexts.pop(correlation_id, None)
        if context is not None:
            context.close()
