"""Handler declarations: `@subscribe` attaches event type and delivery policy to a handler.

Declarations are read once, when a listener is registered; dispatch never inspects handlers.

    class Mailer:
        @subscribe(UserCreated, retryable=True, timeout_seconds=10)
        async def send_welcome(self, event: UserCreated) -> None:
            ...
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, List

from app.domain.models.event import DEFAULT_TIMEOUT_SECONDS, HandlerPolicy

SUBSCRIPTION_ATTR = "__event_subscription__"


@dataclass(frozen=True)
class Subscription:
    event_type: type
    policy: HandlerPolicy


@dataclass(frozen=True)
class HandlerRegistration:
    """A discovered handler: callable bound to its listener, plus its declared subscription."""

    event_type: type
    handler: Callable[[Any], Any]
    policy: HandlerPolicy
    name: str

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.handler)


def subscribe(
    event_type: type,
    *,
    retryable: bool = False,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    propagate_exception: bool = False,
) -> Callable[[Callable], Callable]:
    """Declare a function or method as a handler for `event_type`."""
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")
    subscription = Subscription(
        event_type=event_type,
        policy=HandlerPolicy(
            retryable=retryable,
            timeout_seconds=timeout_seconds,
            propagate_exception=propagate_exception,
        ),
    )

    def decorator(func: Callable) -> Callable:
        setattr(func, SUBSCRIPTION_ATTR, subscription)
        return func

    return decorator


def _handler_name(handler: Callable) -> str:
    owner = getattr(handler, "__self__", None)
    qualname = getattr(handler, "__qualname__", repr(handler))
    if owner is not None and not qualname.startswith(type(owner).__name__):
        return f"{type(owner).__name__}.{qualname}"
    return qualname


def discover_handlers(listener: Any) -> List[HandlerRegistration]:
    """
    Return the declared handlers of `listener`: the listener itself when it is a decorated
    function, otherwise every decorated method of its class, bound to the instance.
    """
    subscription = getattr(listener, SUBSCRIPTION_ATTR, None)
    if subscription is not None and callable(listener):
        return [
            HandlerRegistration(
                event_type=subscription.event_type,
                handler=listener,
                policy=subscription.policy,
                name=_handler_name(listener),
            )
        ]

    found: List[HandlerRegistration] = []
    for attr_name, member in inspect.getmembers(type(listener), callable):
        subscription = getattr(member, SUBSCRIPTION_ATTR, None)
        if subscription is None:
            continue
        bound = getattr(listener, attr_name)
        found.append(
            HandlerRegistration(
                event_type=subscription.event_type,
                handler=bound,
                policy=subscription.policy,
                name=_handler_name(bound),
            )
        )
    return found
