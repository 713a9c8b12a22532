from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence

from finance_backend.decimal_math import Numeric, to_decimal
from finance_backend.domain import Periodicity

ONE_DAY = timedelta(days=1)
END_OF_DAY = time(23, 59, 59, 999999)

OCCURRENCES_PER_YEAR = {
    Periodicity.DAILY: 365,
    Periodicity.WEEKLY: 52,
    Periodicity.MONTHLY: 12,
    Periodicity.QUARTERLY: 4,
    Periodicity.HALF_YEARLY: 2,
    Periodicity.YEARLY: 1,
}

# Upper bound (in days) of the average gap for each detected frequency,
# checked in order.
FREQUENCY_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (7, Periodicity.WEEKLY),
    (31, Periodicity.MONTHLY),
    (93, Periodicity.QUARTERLY),
    (186, Periodicity.HALF_YEARLY),
    (366, Periodicity.YEARLY),
)
MIN_OCCURRENCES = 3


@dataclass(frozen=True)
class PeriodRange:
    period: str
    start: datetime
    end: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    def contains(self, value: date | datetime) -> bool:
        return self.start <= as_utc_datetime(value) <= self.end


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def as_utc_datetime(value: date | datetime) -> datetime:
    """Dates become UTC midnight; naive datetimes are read as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def as_utc_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return as_utc_datetime(value).date()
    return value


def get_period_dates(
    period: str, reference: Optional[date | datetime] = None
) -> PeriodRange:
    """Start of the period containing ``reference`` through the end of that day.

    Ranges run "from the start of the period until now", not over the full
    calendar period, so a MONTHLY range on the 10th stops on the 10th.
    """
    normalized = Periodicity.validate(period)
    day = as_utc_date(reference if reference is not None else utc_now())

    if normalized == Periodicity.DAILY:
        start_day = day
    elif normalized == Periodicity.WEEKLY:
        start_day = day - timedelta(days=day.weekday())
    elif normalized == Periodicity.MONTHLY:
        start_day = day.replace(day=1)
    elif normalized == Periodicity.QUARTERLY:
        start_day = date(day.year, ((day.month - 1) // 3) * 3 + 1, 1)
    elif normalized == Periodicity.HALF_YEARLY:
        start_day = date(day.year, 1 if day.month <= 6 else 7, 1)
    elif normalized == Periodicity.YEARLY:
        start_day = date(day.year, 1, 1)
    else:
        raise ValueError("ONE_TIME has no reporting period.")

    return PeriodRange(
        period=normalized,
        start=datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        end=datetime.combine(day, END_OF_DAY, tzinfo=timezone.utc),
    )


def period_label(period: str, reference: date | datetime) -> str:
    normalized = Periodicity.validate(period)
    day = as_utc_date(reference)
    if normalized == Periodicity.DAILY:
        return _short_date(day)
    if normalized == Periodicity.WEEKLY:
        return f"Week of {_short_date(get_period_dates(normalized, day).start_date)}"
    if normalized == Periodicity.MONTHLY:
        return f"{calendar.month_name[day.month]} {day.year}"
    if normalized == Periodicity.QUARTERLY:
        return f"Q{(day.month - 1) // 3 + 1} {day.year}"
    if normalized == Periodicity.HALF_YEARLY:
        return f"{'H1' if day.month <= 6 else 'H2'} {day.year}"
    if normalized == Periodicity.YEARLY:
        return str(day.year)
    return normalized


def _short_date(value: date) -> str:
    return f"{calendar.month_abbr[value.month]} {value.day}, {value.year}"


def months_between(start: date | datetime, end: date | datetime) -> int:
    """Whole calendar months elapsed from ``start`` to ``end``."""
    start_day = as_utc_date(start)
    end_day = as_utc_date(end)
    total = (end_day.year - start_day.year) * 12 + (end_day.month - start_day.month)
    if end_day.day < start_day.day:
        total -= 1
    return total


def days_between(start: date | datetime, end: date | datetime) -> int:
    """Ceiling of the day difference; negative when ``end`` precedes ``start``."""
    delta = as_utc_datetime(end) - as_utc_datetime(start)
    return -((-delta) // ONE_DAY)


class FrequencyDetector(Protocol):
    def detect(self, dates: Sequence[date | datetime]) -> Optional[str]:
        ...


class AverageGapDetector:
    """Classify a date series by the mean spacing between neighbours.

    This is a coarse heuristic: it ignores gap variance, so irregular
    spending whose gaps happen to average ~30 days reads as MONTHLY.
    """

    def __init__(
        self,
        thresholds: Sequence[tuple[int, str]] = FREQUENCY_THRESHOLDS,
        min_occurrences: int = MIN_OCCURRENCES,
    ) -> None:
        self.thresholds = tuple(thresholds)
        self.min_occurrences = min_occurrences

    def detect(self, dates: Sequence[date | datetime]) -> Optional[str]:
        if len(dates) < self.min_occurrences:
            return None
        ordered = sorted(as_utc_datetime(value) for value in dates)
        gaps = [later - earlier for earlier, later in zip(ordered, ordered[1:])]
        average_gap = sum(gaps, timedelta()) / len(gaps)
        for max_days, frequency in self.thresholds:
            if average_gap <= timedelta(days=max_days):
                return frequency
        return None


DEFAULT_DETECTOR: FrequencyDetector = AverageGapDetector()


def detect_frequency(
    dates: Iterable[date | datetime],
    detector: FrequencyDetector = DEFAULT_DETECTOR,
) -> Optional[str]:
    return detector.detect(list(dates))


def recurrence_to_monthly_factor(recurrence: str) -> Decimal:
    """How many times per month a recurrence happens (YEARLY -> 1/12)."""
    return Decimal(_occurrences_per_year(recurrence)) / Decimal(12)


def monthly_equivalent(cost: Numeric, recurrence: str) -> Decimal:
    # Multiply before dividing so YEARLY 2400 is exactly 200.
    return to_decimal(cost) * _occurrences_per_year(recurrence) / Decimal(12)


def _occurrences_per_year(recurrence: str) -> int:
    normalized = Periodicity.validate(recurrence)
    if normalized == Periodicity.ONE_TIME:
        raise ValueError("ONE_TIME has no monthly equivalent.")
    return OCCURRENCES_PER_YEAR[normalized]
