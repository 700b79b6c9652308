"""Calendar-day period arithmetic for the dashboard.

Periods are inclusive on both ends and measured in whole days. The comparison
period is the contiguous window of equal length that ends the day before the
current period starts:

    current:    [2024-01-01 .. 2024-01-03]  (3 days)
    comparison: [2023-12-29 .. 2023-12-31]  (3 days)

Event timestamps are assigned to days in the configured timezone.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from app.core.exceptions import InvalidRangeError

ONE_DAY = timedelta(days=1)


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative if end precedes start)."""
    return (end - start).days


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar days.

    Attributes:
        start: First day of the range.
        end: Last day of the range.
    """

    start: date
    end: date

    @property
    def days(self) -> int:
        """Number of days in the range, never below 1."""
        return max(days_between(self.start, self.end) + 1, 1)

    def iter_days(self) -> Iterator[date]:
        """Yield every day in the range in increasing order."""
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)

    def contains(self, day: date) -> bool:
        """Check whether a day falls inside the range."""
        return self.start <= day <= self.end

    def comparison(self) -> DateRange | None:
        """Preceding range of equal length.

        Returns:
            The comparison range, or None when it would fall before the first
            representable calendar day.
        """
        try:
            comparison_end = self.start - ONE_DAY
            comparison_start = comparison_end - timedelta(days=self.days - 1)
        except OverflowError:
            return None
        return DateRange(start=comparison_start, end=comparison_end)

    def bounds(self, tz: tzinfo) -> tuple[datetime, datetime]:
        """Timestamp bounds for querying the range.

        Args:
            tz: Timezone that defines where each day starts.

        Returns:
            (start inclusive, end exclusive) aware datetimes.
        """
        return day_start(self.start, tz), day_end(self.end, tz)


def day_start(day: date, tz: tzinfo) -> datetime:
    """Aware timestamp at which a calendar day begins in the given timezone."""
    return datetime.combine(day, time.min, tzinfo=tz)


def day_end(day: date, tz: tzinfo) -> datetime:
    """Exclusive upper bound for a calendar day: the start of the next day.

    At ``date.max`` there is no next day, so the bound saturates to the last
    representable instant instead.
    """
    try:
        return day_start(day + ONE_DAY, tz)
    except OverflowError:
        return datetime.max.replace(tzinfo=tz)


def local_day(moment: datetime, tz: tzinfo) -> date:
    """Calendar day of a timestamp in the given timezone.

    Naive timestamps are taken to be UTC, which is how the product database
    stores them.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(tz).date()


def default_range(today: date, days: int) -> DateRange:
    """Trailing window of ``days`` days ending today."""
    return DateRange(start=today - timedelta(days=days - 1), end=today)


def resolve_range(
    start: date | None,
    end: date | None,
    *,
    today: date,
    default_days: int,
    max_days: int,
) -> DateRange:
    """Build the requested range, filling in defaults and validating it.

    Missing bounds default to the trailing ``default_days`` window ending
    today. A lone ``start`` runs to today; a lone ``end`` gets a window of
    ``default_days`` ending on it.

    Args:
        start: Requested first day, or None.
        end: Requested last day, or None.
        today: Current day in the analytics timezone.
        default_days: Length of the default window.
        max_days: Longest allowed range.

    Returns:
        Validated date range.

    Raises:
        InvalidRangeError: If end precedes start or the range is too long.
    """
    if start is None and end is None:
        return default_range(today, default_days)
    if end is None:
        end = today
    if start is None:
        start = end - timedelta(days=default_days - 1)

    span = days_between(start, end) + 1
    if span < 1:
        raise InvalidRangeError(
            message=f"end_date {end.isoformat()} is before start_date {start.isoformat()}",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
    if span > max_days:
        raise InvalidRangeError(
            message=f"Date range spans {span} days; the maximum is {max_days}",
            details={"days": span, "max_days": max_days},
        )
    return DateRange(start=start, end=end)
