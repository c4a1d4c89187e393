"""
Time bucketing and aggregation of expense records.

All timestamps are compared as naive UTC. Aware datetimes are converted to UTC
first so a record always lands in exactly one bucket per granularity.
"""
from __future__ import annotations

import calendar
import re
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord

GRANULARITIES = ("day", "week", "month", "quarter", "year")

_WEEK_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER_KEY = re.compile(r"^(\d{4})-Q([1-4])$")
_YEAR_KEY = re.compile(r"^(\d{4})$")


@dataclass
class TimeBucket:
    key: str
    start: datetime
    total_amount: Decimal
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "amount": self.total_amount, "count": self.count}


@dataclass
class CategoryTotal:
    category: str
    amount: Decimal
    count: int
    percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def as_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _check_granularity(granularity: str) -> None:
    if granularity not in GRANULARITIES:
        raise InvalidInputError(
            f"Unknown granularity '{granularity}', expected one of {', '.join(GRANULARITIES)}"
        )


def bucket_key(timestamp: datetime, granularity: str) -> str:
    _check_granularity(granularity)
    ts = as_utc_naive(timestamp)
    if granularity == "day":
        return ts.strftime("%Y-%m-%d")
    if granularity == "week":
        iso_year, iso_week, _ = ts.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == "month":
        return f"{ts.year}-{ts.month:02d}"
    if granularity == "quarter":
        return f"{ts.year}-Q{(ts.month - 1) // 3 + 1}"
    return f"{ts.year}"


def period_bounds(granularity: str, key: str) -> Tuple[datetime, datetime]:
    """
    Return the half-open ``[start, end)`` interval covered by a bucket key.
    """
    _check_granularity(granularity)
    try:
        if granularity == "day":
            start = datetime.strptime(key, "%Y-%m-%d")
            return start, start + timedelta(days=1)
        if granularity == "week":
            match = _WEEK_KEY.match(key)
            if not match:
                raise ValueError(key)
            start_day = date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
            start = datetime.combine(start_day, datetime.min.time())
            return start, start + timedelta(days=7)
        if granularity == "month":
            match = _MONTH_KEY.match(key)
            if not match:
                raise ValueError(key)
            start = datetime(int(match.group(1)), int(match.group(2)), 1)
            return start, add_months(start, 1)
        if granularity == "quarter":
            match = _QUARTER_KEY.match(key)
            if not match:
                raise ValueError(key)
            start = datetime(int(match.group(1)), (int(match.group(2)) - 1) * 3 + 1, 1)
            return start, add_months(start, 3)
        match = _YEAR_KEY.match(key)
        if not match:
            raise ValueError(key)
        start = datetime(int(match.group(1)), 1, 1)
        return start, start.replace(year=start.year + 1)
    except ValueError:
        raise InvalidInputError(f"'{key}' is not a valid {granularity} key")


def undated_records(records: Iterable[ExpenseRecord]) -> List[ExpenseRecord]:
    return [record for record in records if record.timestamp is None]


def total_amount(records: Iterable[ExpenseRecord]) -> Decimal:
    """Grand total straight from the records, including undated ones."""
    return sum((record.amount for record in records), Decimal("0"))


def bucket_records(records: Iterable[ExpenseRecord], granularity: str) -> List[TimeBucket]:
    """
    Group dated records into buckets sorted by period start.

    Records without a timestamp cannot be placed and are left out; use
    ``total_amount`` on the raw records when a grand total is needed.
    """
    _check_granularity(granularity)
    totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    counts: Dict[str, int] = defaultdict(int)
    for record in records:
        if record.timestamp is None:
            continue
        key = bucket_key(record.timestamp, granularity)
        totals[key] += record.amount
        counts[key] += 1

    buckets = [
        TimeBucket(
            key=key,
            start=period_bounds(granularity, key)[0],
            total_amount=totals[key],
            count=counts[key],
        )
        for key in totals
    ]
    buckets.sort(key=lambda bucket: bucket.start)
    return buckets


def category_breakdown(records: Iterable[ExpenseRecord]) -> List[CategoryTotal]:
    """
    Partition records by category label; every record counts in exactly one row.
    """
    amounts: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    counts: Dict[str, int] = defaultdict(int)
    for record in records:
        amounts[record.category_label] += record.amount
        counts[record.category_label] += 1

    grand_total = sum(amounts.values(), Decimal("0"))
    breakdown = [
        CategoryTotal(
            category=category,
            amount=amount,
            count=counts[category],
            percentage=float(amount / grand_total * 100) if grand_total > 0 else 0.0,
        )
        for category, amount in amounts.items()
    ]
    breakdown.sort(key=lambda item: (-item.amount, item.category))
    return breakdown


def filter_range(
    records: Iterable[ExpenseRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[ExpenseRecord]:
    """Dated records with ``start <= timestamp <= end``; either bound may be open."""
    start = as_utc_naive(start) if start else None
    end = as_utc_naive(end) if end else None
    selected = []
    for record in records:
        if record.timestamp is None:
            continue
        ts = as_utc_naive(record.timestamp)
        if start is not None and ts < start:
            continue
        if end is not None and ts > end:
            continue
        selected.append(record)
    return selected
