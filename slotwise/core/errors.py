"""Error taxonomy for the scheduling core.

Engine and service code raise these; only the API layer turns them into
HTTP responses.
"""

from __future__ import annotations

from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class ConfigurationError(SchedulingError):
    """Invalid host/event-type setup: bad timezone, malformed window,
    non-positive duration. Fatal and never retried; operators need to fix
    the configuration."""


class SlotConflict(SchedulingError):
    """The requested instant is no longer free. The attendee should pick
    another time."""


class PolicyViolation(SchedulingError):
    """The requested instant breaks minimum notice, the future horizon or
    a recurrence limit at commit time."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class EventTypeNotFound(SchedulingError):
    pass


class BookingNotFound(SchedulingError):
    pass


class InvalidTransition(SchedulingError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition from {current} to {requested}")


class ScheduleInUse(SchedulingError):
    """A schedule still referenced by an event type cannot be deleted."""
