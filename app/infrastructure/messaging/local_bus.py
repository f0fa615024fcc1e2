"""In-process publish/subscribe primitive. Dispatches each event to its handlers as independent tasks."""

import asyncio
import inspect
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriberExceptionContext:
    """Where a handler failure happened: the event being delivered and the handler that raised."""

    bus_name: str
    event: Any
    event_type: type
    handler: Callable[[Any], Any]


ExceptionHandler = Callable[[BaseException, SubscriberExceptionContext], None]


def _log_exception(exc: BaseException, context: SubscriberExceptionContext) -> None:
    logger.error(
        "subscriber_raised",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"bus": context.bus_name, "event_type": context.event_type.__name__},
    )


class LocalEventBus:
    """
    Routes an event to every handler registered for its class or one of its base classes.
    post() only schedules work: async handlers run as tasks on the running loop, sync handlers
    on the default thread pool. Handler exceptions go to the exception handler, never to post().
    """

    def __init__(
        self,
        exception_handler: Optional[ExceptionHandler] = None,
        name: str = "default",
    ) -> None:
        self._name = name
        self._exception_handler = exception_handler or _log_exception
        self._subscribers: Dict[type, List[Callable[[Any], Any]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self._name

    def register(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        with self._lock:
            if handler not in self._subscribers[event_type]:
                self._subscribers[event_type].append(handler)

    def unregister(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler not in handlers:
                raise ValueError(f"Handler {handler!r} is not registered for {event_type.__name__}")
            handlers.remove(handler)

    def subscribers_for(self, event_type: type) -> List[Callable[[Any], Any]]:
        with self._lock:
            found: List[Callable[[Any], Any]] = []
            for klass in event_type.__mro__:
                found.extend(self._subscribers.get(klass, ()))
            return found

    def post(self, event: Any) -> int:
        """Schedule delivery of `event`; returns the number of handlers it was handed to."""
        loop = asyncio.get_running_loop()
        handlers = self.subscribers_for(type(event))
        for handler in handlers:
            task = loop.create_task(self._invoke(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(handlers)

    async def _invoke(self, handler: Callable[[Any], Any], event: Any) -> None:
        try:
            if inspect.iscoroutinefunction(handler):
                await handler(event)
            else:
                await asyncio.to_thread(handler, event)
        except Exception as exc:
            self._handle_exception(
                exc,
                SubscriberExceptionContext(
                    bus_name=self._name,
                    event=event,
                    event_type=type(event),
                    handler=handler,
                ),
            )

    def _handle_exception(self, exc: BaseException, context: SubscriberExceptionContext) -> None:
        try:
            self._exception_handler(exc, context)
        except Exception as handler_error:
            # An exception handler that raises must not take down the dispatching task.
            logger.error(
                "exception_handler_raised",
                exc_info=(type(handler_error), handler_error, handler_error.__traceback__),
                extra={"bus": self._name, "event_type": context.event_type.__name__},
            )

    @property
    def pending_deliveries(self) -> int:
        return len(self._tasks)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for scheduled deliveries to finish. Returns False if some are still running."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending
