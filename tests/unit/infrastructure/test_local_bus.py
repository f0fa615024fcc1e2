"""LocalEventBus: routing by class hierarchy, async and sync handlers, exception boundary."""

import asyncio
import threading

import pytest

from app.infrastructure.messaging.local_bus import LocalEventBus, SubscriberExceptionContext


class BaseEvent:
    pass


class ChildEvent(BaseEvent):
    pass


@pytest.mark.asyncio
async def test_post_delivers_to_async_and_sync_handlers():
    bus = LocalEventBus()
    seen = []
    threads = []

    async def on_async(event):
        seen.append(("async", event))

    def on_sync(event):
        threads.append(threading.current_thread())
        seen.append(("sync", event))

    bus.register(ChildEvent, on_async)
    bus.register(ChildEvent, on_sync)
    event = ChildEvent()
    assert bus.post(event) == 2
    assert await bus.join(timeout=1)
    assert sorted(kind for kind, _ in seen) == ["async", "sync"]
    assert threads[0] is not threading.main_thread()


@pytest.mark.asyncio
async def test_handlers_for_base_class_receive_subclass_events():
    bus = LocalEventBus()
    received = []

    async def on_base(event):
        received.append(event)

    bus.register(BaseEvent, on_base)
    assert bus.post(ChildEvent()) == 1
    assert bus.post(object()) == 0
    await bus.join(timeout=1)
    assert len(received) == 1


@pytest.mark.asyncio
async def test_register_twice_delivers_once():
    bus = LocalEventBus()

    async def handler(event):
        pass

    bus.register(BaseEvent, handler)
    bus.register(BaseEvent, handler)
    assert bus.subscribers_for(BaseEvent) == [handler]


@pytest.mark.asyncio
async def test_unregister_unknown_handler_raises():
    bus = LocalEventBus()
    with pytest.raises(ValueError):
        bus.unregister(BaseEvent, lambda e: None)


@pytest.mark.asyncio
async def test_handler_exception_goes_to_exception_handler():
    captured = []

    def on_error(exc, context: SubscriberExceptionContext):
        captured.append((exc, context))

    bus = LocalEventBus(exception_handler=on_error, name="orders")

    async def broken(event):
        raise RuntimeError("boom")

    bus.register(ChildEvent, broken)
    event = ChildEvent()
    bus.post(event)
    await bus.join(timeout=1)

    assert len(captured) == 1
    exc, context = captured[0]
    assert isinstance(exc, RuntimeError)
    assert context.bus_name == "orders"
    assert context.event is event
    assert context.event_type is ChildEvent
    assert context.handler is broken


@pytest.mark.asyncio
async def test_raising_exception_handler_is_contained(caplog):
    def bad_handler(exc, context):
        raise ValueError("handler broke")

    bus = LocalEventBus(exception_handler=bad_handler)

    def broken(event):
        raise RuntimeError("boom")

    bus.register(ChildEvent, broken)
    bus.post(ChildEvent())
    assert await bus.join(timeout=1)
    assert any(r.getMessage() == "exception_handler_raised" for r in caplog.records)


@pytest.mark.asyncio
async def test_join_times_out_on_slow_handler():
    bus = LocalEventBus()
    release = asyncio.Event()

    async def slow(event):
        await release.wait()

    bus.register(ChildEvent, slow)
    bus.post(ChildEvent())
    assert bus.pending_deliveries == 1
    assert not await bus.join(timeout=0.05)
    release.set()
    assert await bus.join(timeout=1)
