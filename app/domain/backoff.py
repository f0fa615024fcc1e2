"""Backoff scheduling: next-attempt delay and terminal-failure decision for a failed delivery."""

from dataclasses import dataclass

DEFAULT_BASE_BACKOFF_MS = 1000


@dataclass(frozen=True)
class RetryDecision:
    attempt: int
    backoff_ms: int

    @property
    def terminal(self) -> bool:
        """A zero backoff means no further attempt is scheduled."""
        return self.backoff_ms == 0


class BackoffScheduler:
    """
    Exponential backoff without jitter: attempt k waits 2**k * base_ms.
    The attempt that reaches max_attempts is terminal (backoff 0).
    """

    def __init__(self, base_backoff_ms: int = DEFAULT_BASE_BACKOFF_MS) -> None:
        if base_backoff_ms <= 0:
            raise ValueError("base_backoff_ms must be positive")
        self._base_ms = base_backoff_ms

    def backoff_for(self, attempt: int) -> int:
        """Delay in ms before the attempt after `attempt`. Strictly increasing in attempt."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return (2 ** attempt) * self._base_ms

    def next_decision(self, previous_attempts: int, max_attempts: int) -> RetryDecision:
        attempt = previous_attempts + 1
        if attempt >= max_attempts:
            return RetryDecision(attempt=max_attempts, backoff_ms=0)
        return RetryDecision(attempt=attempt, backoff_ms=self.backoff_for(attempt))
