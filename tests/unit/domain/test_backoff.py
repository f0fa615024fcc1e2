"""BackoffScheduler: exponential delays, terminal decision at max_attempts."""

import pytest

from app.domain.backoff import BackoffScheduler, RetryDecision


def test_backoff_doubles_per_attempt():
    scheduler = BackoffScheduler(base_backoff_ms=1000)
    assert scheduler.backoff_for(1) == 2000
    assert scheduler.backoff_for(2) == 4000
    assert scheduler.backoff_for(3) == 8000


def test_backoff_strictly_increasing():
    scheduler = BackoffScheduler(base_backoff_ms=250)
    delays = [scheduler.backoff_for(k) for k in range(1, 10)]
    assert all(a < b for a, b in zip(delays, delays[1:]))


def test_backoff_rejects_attempt_below_one():
    with pytest.raises(ValueError):
        BackoffScheduler().backoff_for(0)


def test_base_must_be_positive():
    with pytest.raises(ValueError):
        BackoffScheduler(base_backoff_ms=0)


def test_next_decision_schedules_retry_below_max():
    decision = BackoffScheduler(base_backoff_ms=1000).next_decision(previous_attempts=0, max_attempts=3)
    assert decision == RetryDecision(attempt=1, backoff_ms=2000)
    assert not decision.terminal


def test_next_decision_terminal_at_max():
    """The attempt reaching max_attempts gets backoff 0 and is terminal."""
    decision = BackoffScheduler().next_decision(previous_attempts=2, max_attempts=3)
    assert decision.attempt == 3
    assert decision.backoff_ms == 0
    assert decision.terminal


def test_next_decision_never_exceeds_max():
    decision = BackoffScheduler().next_decision(previous_attempts=5, max_attempts=5)
    assert decision.attempt == 5
    assert decision.terminal


def test_single_attempt_is_immediately_terminal():
    decision = BackoffScheduler().next_decision(previous_attempts=0, max_attempts=1)
    assert decision == RetryDecision(attempt=1, backoff_ms=0)
