# scripts/demo_retry.py
"""
Publishes a few orders to a local SQLite store with one retryable and one best-effort listener,
then polls until every order reaches a terminal status.
"""
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
import random

from pydantic import BaseModel

from app.application import subscribe
from app.config.logging import configure_logging
from app.config.settings import AppSettings
from app.core.bootstrap import build_runtime
from app.domain.models.event import EventStatus


class OrderEvent(BaseModel):
    event_id: str
    amount: float


class PaymentProcessor:
    @subscribe(OrderEvent, retryable=True, timeout_seconds=2)
    async def process_payment(self, event: OrderEvent) -> None:
        if random.random() < 0.5:
            raise RuntimeError("Payment gateway timeout")
        print(f"[payments] charged {event.event_id} {event.amount:.2f}")


class ActivityLogger:
    @subscribe(OrderEvent)
    def log_activity(self, event: OrderEvent) -> None:
        if random.random() < 0.3:
            raise RuntimeError("Logging service unavailable")
        print(f"[activity] recorded {event.event_id}")


async def main():
    settings = AppSettings(
        database_url="sqlite+aiosqlite:///./demo_events.db",
        poll_interval_seconds=0.5,
        base_backoff_ms=250,
        default_max_attempts=4,
        log_level="WARNING",
    )
    configure_logging(settings.log_level)
    runtime = await build_runtime(settings)
    system = runtime.event_system
    system.register(PaymentProcessor())
    system.register(ActivityLogger())

    ids = [await system.publish(OrderEvent(event_id=f"order-{i}", amount=10.0 * i)) for i in range(1, 6)]
    await system.start()
    try:
        while True:
            events = [await system.get_event(i) for i in ids]
            if all(e.status.is_terminal for e in events):
                break
            await asyncio.sleep(0.5)
    finally:
        await runtime.close()

    for e in events:
        marker = "ok" if e.status == EventStatus.SUCCESS else "gave up"
        print(f"#{e.id} {e.status.value} after {e.attempts} failed attempt(s): {marker}")


asyncio.run(main())
