"""
Time provider abstraction for deterministic testing

Certificates are dated with the issuing day, and correlation metadata
carries millisecond timestamps. Both come from an injectable provider so
tests can pin "today".

Fun fact: a certificate issued on 29 February expires on 28 February six
years later - only one in four of those anniversaries exists.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenTimeProvider:
    """
    Controllable time provider for deterministic tests

    Time only moves when the test moves it.
    """

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._current_time = initial_time or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = dt

    def advance_seconds(self, seconds: float) -> None:
        self._current_time += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current_time += timedelta(days=days)


def today(provider: TimeProvider) -> date:
    """Calendar date of the provider's current time"""
    return provider.now().date()


def epoch_millis(provider: TimeProvider) -> int:
    """Milliseconds since the Unix epoch, as carried in correlation metadata"""
    return int(provider.now().timestamp() * 1000)


def add_years(start: date, years: int) -> date:
    """
    Add whole calendar years, clamping 29 February to 28 February

    Args:
        start: Starting date
        years: Number of years to add

    Returns:
        Same month and day `years` later, or 28 February when the target
        year has no leap day
    """
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)
