"""End-to-end delivery through EventSystem on a SQLite store with a controllable clock."""

import asyncio
import threading
from datetime import timedelta

import pytest
from pydantic import BaseModel

from app.application.event_system import EventSystem
from app.application.exceptions import SerializationError
from app.application.subscriber import subscribe
from app.domain.models.event import EventStatus
from app.observability import metrics as m


class AccountOpened(BaseModel):
    event_id: str
    owner: str = "ada"


class FlakyMailer:
    """Retryable handler failing a fixed number of times before succeeding."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    @subscribe(AccountOpened, retryable=True, timeout_seconds=1)
    async def send(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"smtp down ({self.calls})")


class StrictAuditor:
    """Non-retryable handler: failures are logged and the event still completes."""

    def __init__(self):
        self.calls = 0

    @subscribe(AccountOpened)
    async def record(self, event):
        self.calls += 1
        raise ValueError("malformed owner")


class SlowScorer:
    def __init__(self):
        self.finished = asyncio.Event()

    @subscribe(AccountOpened, retryable=True, timeout_seconds=1)
    async def score(self, event):
        await asyncio.sleep(1.3)
        self.finished.set()


class ThreadedLedger:
    def __init__(self):
        self.threads = []

    @subscribe(AccountOpened, retryable=True, timeout_seconds=1)
    def post_entry(self, event):
        self.threads.append(threading.current_thread().name)


class LateMailer:
    """Retryable handler that fails only after a sibling handler has already reported."""

    def __init__(self):
        self.calls = 0
        self.failed = asyncio.Event()

    @subscribe(AccountOpened, retryable=True, timeout_seconds=1)
    async def send(self, event):
        self.calls += 1
        await asyncio.sleep(0.1)
        self.failed.set()
        raise RuntimeError("smtp down late")


class LateAuditor:
    def __init__(self):
        self.calls = 0
        self.failed = asyncio.Event()

    @subscribe(AccountOpened)
    async def record(self, event):
        self.calls += 1
        await asyncio.sleep(0.1)
        self.failed.set()
        raise ValueError("malformed owner")


class LoudHandler:
    @subscribe(AccountOpened, retryable=True, timeout_seconds=1, propagate_exception=True)
    async def handle(self, event):
        raise RuntimeError("must surface")


@pytest.fixture
def system(store, settings):
    return EventSystem(store=store, settings=settings)


async def _cycle(system: EventSystem) -> int:
    submitted = await system.poller.tick()
    assert await system.poller.drain(timeout=5)
    return submitted


@pytest.mark.asyncio
async def test_publish_persists_pending_event(system):
    event_id = await system.publish(AccountOpened(event_id="a-1"))
    stored = await system.get_event(event_id)
    assert stored.status == EventStatus.PENDING
    assert stored.attempts == 0
    assert stored.max_attempts == 5
    assert stored.type.endswith("AccountOpened")
    assert system.metrics.counter(m.EVENTS_PUBLISHED) == 1


@pytest.mark.asyncio
async def test_publish_rejects_unserializable_event(system):
    with pytest.raises(SerializationError):
        await system.publish(object())


@pytest.mark.asyncio
async def test_publish_rejects_non_positive_max_attempts(system):
    with pytest.raises(ValueError):
        await system.publish(AccountOpened(event_id="a-1"), max_attempts=0)


@pytest.mark.asyncio
async def test_non_retryable_failure_completes_event(system):
    auditor = StrictAuditor()
    system.register(auditor)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    assert await _cycle(system) == 1
    stored = await system.get_event(event_id)
    assert auditor.calls == 1
    assert stored.status == EventStatus.SUCCESS
    assert stored.attempts == 0


@pytest.mark.asyncio
async def test_retryable_handler_succeeds_after_backoff(system, clock):
    mailer = FlakyMailer(failures=2)
    system.register(mailer)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)
    assert stored.last_error == "RuntimeError: smtp down (1)"

    # Not due before the 2s backoff has elapsed.
    clock.advance(1)
    assert await _cycle(system) == 0

    clock.advance(1)
    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 2)

    clock.advance(4)
    await _cycle(system)
    stored = await system.get_event(event_id)
    assert stored.status == EventStatus.SUCCESS
    assert stored.attempts == 2
    assert mailer.calls == 3


@pytest.mark.asyncio
async def test_single_failure_then_success(system, clock):
    system.register(FlakyMailer(failures=1))
    event_id = await system.publish(AccountOpened(event_id="a-1"), max_attempts=5)

    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)
    assert stored.next_attempt_at == clock.now + timedelta(seconds=2)

    clock.advance(2)
    await _cycle(system)
    assert (await system.get_event(event_id)).status == EventStatus.SUCCESS


@pytest.mark.asyncio
async def test_retries_stop_at_max_attempts(system, clock):
    mailer = FlakyMailer(failures=100)
    system.register(mailer)
    event_id = await system.publish(AccountOpened(event_id="a-1"), max_attempts=2)

    await _cycle(system)
    clock.advance(2)
    await _cycle(system)
    stored = await system.get_event(event_id)
    assert stored.status == EventStatus.FAILED
    assert stored.attempts == 2

    clock.advance(3600)
    assert await _cycle(system) == 0
    assert mailer.calls == 2
    assert system.metrics.counter(m.EVENTS_FAILED) == 1


@pytest.mark.asyncio
async def test_timeout_retries_and_late_completion_is_ignored(system):
    scorer = SlowScorer()
    system.register(scorer)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)

    await asyncio.wait_for(scorer.finished.wait(), timeout=2)
    await asyncio.sleep(0.01)
    assert system.correlator.pending == 0
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)
    assert system.metrics.counter(m.DISPATCH_TIMEOUTS) == 1


@pytest.mark.asyncio
async def test_sync_handler_runs_off_loop(system):
    ledger = ThreadedLedger()
    system.register(ledger)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    assert len(ledger.threads) == 1
    assert ledger.threads[0] != threading.current_thread().name
    assert (await system.get_event(event_id)).status == EventStatus.SUCCESS


@pytest.mark.asyncio
async def test_propagated_exception_is_still_recorded(system):
    system.register(LoudHandler())
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)


@pytest.mark.asyncio
async def test_event_without_subscribers_completes(system):
    system.register_type(AccountOpened)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    assert (await system.get_event(event_id)).status == EventStatus.SUCCESS


@pytest.mark.asyncio
async def test_overlapping_ticks_do_not_double_dispatch(system):
    scorer = SlowScorer()
    system.register(scorer)
    await system.publish(AccountOpened(event_id="a-1"))

    assert await system.poller.tick() == 1
    assert await system.poller.tick() == 0
    assert await system.poller.drain(timeout=5)


@pytest.mark.asyncio
async def test_background_poller_delivers(system):
    mailer = FlakyMailer(failures=0)
    system.register(mailer)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await system.start()
    try:
        for _ in range(100):
            if (await system.get_event(event_id)).status == EventStatus.SUCCESS:
                break
            await asyncio.sleep(0.02)
    finally:
        await system.stop()
    assert (await system.get_event(event_id)).status == EventStatus.SUCCESS
    assert mailer.calls == 1


@pytest.mark.asyncio
async def test_mixed_handlers_first_report_decides_success(system):
    """With several handlers on one type, the first report opens the gate and decides the attempt."""
    auditor = StrictAuditor()
    mailer = LateMailer()
    system.register(auditor)
    system.register(mailer)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.SUCCESS, 0)

    # The retryable handler's later failure is lost once the attempt is settled.
    await asyncio.wait_for(mailer.failed.wait(), timeout=2)
    await asyncio.sleep(0.01)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.SUCCESS, 0)
    assert (auditor.calls, mailer.calls) == (1, 1)
    assert system.correlator.pending == 0
    assert system.metrics.counter(m.EVENTS_RETRIED) == 0


@pytest.mark.asyncio
async def test_mixed_handlers_first_report_decides_retry(system, clock):
    """A quick retryable failure retries the event and re-runs its sibling handler too."""
    mailer = FlakyMailer(failures=1)
    auditor = LateAuditor()
    system.register(mailer)
    system.register(auditor)
    event_id = await system.publish(AccountOpened(event_id="a-1"))

    await _cycle(system)
    await asyncio.wait_for(auditor.failed.wait(), timeout=2)
    await asyncio.sleep(0.01)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.PENDING, 1)
    assert stored.last_error == "RuntimeError: smtp down (1)"
    assert system.correlator.pending == 0

    clock.advance(2)
    await _cycle(system)
    stored = await system.get_event(event_id)
    assert (stored.status, stored.attempts) == (EventStatus.SUCCESS, 1)
    await asyncio.sleep(0.15)
    assert (mailer.calls, auditor.calls) == (2, 2)
