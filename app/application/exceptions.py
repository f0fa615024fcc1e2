"""Application-layer exceptions. Do not reuse domain exceptions."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.domain.models.event import ExecutionResult


class ApplicationError(Exception):
    """Base for all application-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PersistenceError(ApplicationError):
    """Store unreachable or query failed. Fatal on publish; logged and absorbed by the poller."""


class SerializationError(ApplicationError):
    """Event could not be encoded for storage. Fatal to the publish call."""


class DeserializationError(ApplicationError):
    """Stored type or payload could not be resolved at replay time. Never fatal."""

    def __init__(self, message: str, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(message)


class HandlerExecutionError(ApplicationError):
    """A handler raised. Only surfaces when the handler declares propagate_exception."""

    def __init__(
        self,
        message: str,
        correlation_id: str,
        handler_name: str,
        result: Optional["ExecutionResult"] = None,
    ) -> None:
        self.correlation_id = correlation_id
        self.handler_name = handler_name
        self.result = result
        super().__init__(message)


class CorrelationTimeoutError(ApplicationError):
    """Internal: no completion was reported in time. Always turned into a timeout-policy decision."""

    def __init__(self, correlation_id: str, timeout: float) -> None:
        self.correlation_id = correlation_id
        self.timeout = timeout
        super().__init__(f"No completion for {correlation_id} within {timeout}s")
