"""
Clock -- injectable time source.

Responsibility:
    Gives the engine, the verification gate and the slot search one place to
    ask for "now", so timestamps on audit entries and appointment slots can
    be pinned in tests.

Architecture position:
    Kernel > Domain -- pure, zero I/O (SystemClock is the one sanctioned
    boundary for reading wall-clock time).

Audit relevance:
    Every ``occurred_at`` on a transition and every ``verified_at`` on a
    verification record comes from an injected Clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock through their constructor and never call
        ``datetime.now()`` themselves.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock returning the real UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()`` or
          ``set_time()`` is called.
        - ``tick()`` advances by exactly one second.
    """

    DEFAULT_TIME = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1, *, days: int = 0, hours: int = 0) -> None:
        """Move the clock forward."""
        self._current = self._current + timedelta(
            days=days, hours=hours, seconds=seconds
        )

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self._current
