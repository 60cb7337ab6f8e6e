"""
Period resolution and the shared comparison arithmetic.

A period is one of 7days, 30days, 6months, 1year, all. Every windowed
period has an equal-length comparison window immediately before it;
`all` has none.
"""
import calendar
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from src.api.middleware.error_handler import InvalidPeriodException


PERIOD_DAYS: Dict[str, Optional[int]] = {
    "7days": 7,
    "30days": 30,
    "6months": 180,
    "1year": 365,
    "all": None,
}

VALID_PERIODS = list(PERIOD_DAYS.keys())

DEFAULT_PERIOD = "30days"

DAILY = "daily"
MONTHLY = "monthly"


@dataclass(frozen=True)
class ResolvedPeriod:
    name: str
    days: Optional[int]
    start: Optional[datetime]
    end: datetime
    previous_start: Optional[datetime]
    previous_end: Optional[datetime]

    @property
    def has_comparison(self) -> bool:
        return self.previous_start is not None

    @property
    def granularity(self) -> str:
        """Trend bucket size: daily up to 30 days, monthly beyond."""
        if self.days is not None and self.days <= 30:
            return DAILY
        return MONTHLY


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_period(period: str) -> str:
    if period not in PERIOD_DAYS:
        raise InvalidPeriodException(period, VALID_PERIODS)
    return period


def resolve_period(period: str, now: Optional[datetime] = None) -> ResolvedPeriod:
    """
    Map a symbolic period to its current and comparison windows.

    For 30days: current = [now-30d, now], previous = [now-60d, now-30d).

    Raises:
        InvalidPeriodException: unknown period name
    """
    validate_period(period)
    now = now or utc_now()
    days = PERIOD_DAYS[period]

    if days is None:
        return ResolvedPeriod(period, None, None, now, None, None)

    start = now - timedelta(days=days)
    return ResolvedPeriod(
        name=period,
        days=days,
        start=start,
        end=now,
        previous_start=now - timedelta(days=2 * days),
        previous_end=start,
    )


def period_for_range(start: Optional[datetime], end: Optional[datetime]) -> str:
    """Pick the analysis period covering an explicit report date range."""
    if start is None or end is None:
        return DEFAULT_PERIOD
    days = math.ceil((end - start).total_seconds() / 86400)
    if days <= 7:
        return "7days"
    if days <= 30:
        return "30days"
    if days <= 180:
        return "6months"
    return "1year"


def percentage_change(current: float, previous: float) -> float:
    """
    Period-over-period change in percent.

    previous > 0 -> (current - previous) / previous * 100
    previous == 0 and current > 0 -> 100
    otherwise 0
    """
    if previous > 0:
        return (current - previous) / previous * 100
    if current > 0:
        return 100.0
    return 0.0


def trend_for(change: float) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "stable"


def directional_trend(current: float, previous: float, better: str, worse: str) -> str:
    """Trend label for metrics where lower is better (response time, cancellations)."""
    if current < previous:
        return better
    if current > previous:
        return worse
    return "stable"


def display_round(value: Optional[float], places: int = 2) -> Optional[float]:
    if value is None:
        return None
    return round(value, places)


def safe_rate(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def format_duration(minutes: float) -> str:
    """Human label: '42 min', '3.5 hrs' or '2.1 days'."""
    if minutes < 60:
        return f"{minutes:.0f} min"
    if minutes < 1440:
        return f"{minutes / 60:.1f} hrs"
    return f"{minutes / 1440:.1f} days"


def bucket_key(moment: datetime, granularity: str) -> str:
    if granularity == DAILY:
        return moment.strftime("%Y-%m-%d")
    return moment.strftime("%Y-%m")


def in_window(moment: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    """Half-open window check; None bounds are unbounded."""
    if start is not None and moment < start:
        return False
    if end is not None and moment >= end:
        return False
    return True


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def mean(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month's end."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
