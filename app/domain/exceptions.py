"""Domain-specific exceptions. Pure domain layer, no infrastructure."""


class DomainError(Exception):
    """Base for all domain-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidStatusTransitionError(DomainError):
    """Raised when a stored event status transition is not allowed (e.g. leaving a terminal status)."""


class InvalidAttemptsError(DomainError):
    """Raised when attempt counters violate 0 <= attempts <= max_attempts."""
