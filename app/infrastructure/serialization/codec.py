"""JSON codec for event payloads. Resolves stored type names back to registered event classes."""

import json
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from app.application.exceptions import DeserializationError, SerializationError
from app.domain.schemas.event import GenericEvent

logger = logging.getLogger(__name__)


def type_name(event_type: type) -> str:
    """Stored discriminator for an event class: fully qualified class name."""
    return f"{event_type.__module__}.{event_type.__qualname__}"


def _is_supported(event_type: type) -> bool:
    return isinstance(event_type, type) and (
        issubclass(event_type, BaseModel) or hasattr(event_type, "__dataclass_fields__")
    )


class EventCodec:
    """
    Encodes pydantic models and dataclasses to JSON and back. Stored type names resolve
    only to classes registered in this process. A stored name is never imported.
    """

    def __init__(self) -> None:
        self._types: Dict[str, type] = {}
        self._adapters: Dict[type, TypeAdapter] = {}
        self._lock = threading.Lock()

    @staticmethod
    def supports(event_type: type) -> bool:
        return _is_supported(event_type)

    def register_type(self, event_type: type) -> str:
        if not _is_supported(event_type):
            raise TypeError(f"{event_type!r} is not a pydantic model or dataclass")
        name = type_name(event_type)
        with self._lock:
            self._types[name] = event_type
        return name

    def _adapter(self, event_type: type) -> TypeAdapter:
        with self._lock:
            adapter = self._adapters.get(event_type)
            if adapter is None:
                adapter = TypeAdapter(event_type)
                self._adapters[event_type] = adapter
            return adapter

    def encode(self, event: Any) -> Tuple[str, str]:
        """Return (type name, JSON payload). Raises SerializationError."""
        event_type = type(event)
        if not _is_supported(event_type):
            raise SerializationError(
                f"Cannot serialize {event_type.__name__}: events must be pydantic models or dataclasses"
            )
        name = self.register_type(event_type)
        try:
            payload = self._adapter(event_type).dump_json(event).decode("utf-8")
        except (PydanticSerializationError, ValueError, TypeError) as e:
            raise SerializationError(f"Cannot serialize {event_type.__name__}: {e}") from e
        return name, payload

    def resolve(self, name: str) -> Optional[type]:
        with self._lock:
            return self._types.get(name)

    def decode(self, name: str, payload: str) -> Any:
        """Rebuild the in-memory event. Raises DeserializationError."""
        event_type = self.resolve(name)
        if event_type is None:
            raise DeserializationError(f"Unknown event type {name}", event_type=name)
        try:
            return self._adapter(event_type).validate_json(payload)
        except ValidationError as e:
            raise DeserializationError(
                f"Payload does not match {name}: {e.error_count()} error(s)", event_type=name
            ) from e

    @staticmethod
    def generic(name: str, payload: str) -> GenericEvent:
        """Structural fallback for a payload whose type could not be resolved."""
        try:
            return GenericEvent(type=name, data=json.loads(payload))
        except ValueError:
            return GenericEvent(type=name, raw=payload)
