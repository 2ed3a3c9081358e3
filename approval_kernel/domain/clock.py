"""
Clock -- injectable time source.

Responsibility:
    Services never call ``datetime.now()`` themselves.  Stage timestamps,
    ledger and audit times, reminder ages and the calendar day embedded in
    sequence numbers all come from the Clock handed to them.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place that reads the
    wall clock.

Invariants enforced:
    - ``now()`` is timezone-aware UTC.
    - ``today()`` is the calendar day of ``now()`` in the clock's business
      timezone (UTC unless configured), so a request created at 23:30 UTC
      by an office seven hours ahead is numbered with the office's date.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo

DEFAULT_TEST_TIME = datetime(2026, 2, 9, 8, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):

    def __init__(self, business_tz: tzinfo | None = None):
        self._business_tz = business_tz or timezone.utc

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Business calendar day used for sequence numbers."""
        return self.now().astimezone(self._business_tz).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests; moves only when ``advance()`` is called.

    Starts at 2026-02-09 08:00 UTC unless ``fixed_time`` is given.
    """

    def __init__(self, fixed_time: datetime | None = None, business_tz: tzinfo | None = None):
        super().__init__(business_tz)
        self._current = fixed_time or DEFAULT_TEST_TIME
        if self._current.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")

    def now(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta | int | float = 1) -> datetime:
        """Move forward by ``delta`` (a timedelta or seconds); returns the new time."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        if delta < timedelta(0):
            raise ValueError("Clock cannot move backwards")
        self._current += delta
        return self._current
