"""
Spending pattern analysis over a lookback window of monthly totals.

The rules are fixed heuristics: a half-vs-half trend test, a seasonal ratio
over designated high-season months and multiplier thresholds for anomalous
months.
"""
from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from household_analytics.models.expense import ExpenseRecord
from household_analytics.utils.bucketing import add_months, as_utc_naive, bucket_records, filter_range

# Lunar New Year (Jan/Feb), summer (Jun/Jul), year-end (Nov/Dec)
HIGH_SEASON_MONTHS = frozenset({1, 2, 6, 7, 11, 12})

MIN_MONTHS_FOR_TREND = 3
TREND_UP_RATIO = 1.10
TREND_DOWN_RATIO = 0.90
ELEVATED_MONTH_RATIO = 1.5
HIGH_MONTH_RATIO = 2.0

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"


@dataclass
class AnomalyMonth:
    month: int
    year: int
    amount: Decimal
    reason: str


@dataclass
class MonthlyTotal:
    month: str  # "YYYY-MM"
    amount: Decimal


@dataclass
class SpendingPattern:
    trend: str
    average_monthly: float
    seasonal_factor: float
    anomaly_months: List[AnomalyMonth] = field(default_factory=list)
    monthly_totals: List[MonthlyTotal] = field(default_factory=list)
    has_seasonal_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _month_series(records: Iterable[ExpenseRecord]) -> List[Tuple[int, int, Decimal]]:
    """
    Monthly totals as ``(year, month, amount)``, zero-filled between the first
    and last month that has any spend.
    """
    buckets = bucket_records(records, "month")
    if not buckets:
        return []

    by_month = {(b.start.year, b.start.month): b.total_amount for b in buckets}
    cursor = buckets[0].start
    last = buckets[-1].start
    series = []
    while cursor <= last:
        series.append((cursor.year, cursor.month, by_month.get((cursor.year, cursor.month), Decimal("0"))))
        cursor = add_months(cursor, 1)
    return series


def classify_trend(totals: List[float]) -> str:
    if len(totals) < MIN_MONTHS_FOR_TREND:
        return TREND_STABLE

    half = len(totals) // 2
    first_avg = statistics.fmean(totals[:half])
    second_avg = statistics.fmean(totals[half:])
    if second_avg > first_avg * TREND_UP_RATIO:
        return TREND_INCREASING
    if second_avg < first_avg * TREND_DOWN_RATIO:
        return TREND_DECREASING
    return TREND_STABLE


def analyze_spending_pattern(
    records: Iterable[ExpenseRecord],
    lookback_months: int = 12,
    now: Optional[datetime] = None,
) -> SpendingPattern:
    now = as_utc_naive(now) if now else datetime.utcnow()
    window = filter_range(records, add_months(now, -lookback_months), now)
    series = _month_series(window)

    if not series:
        return SpendingPattern(trend=TREND_STABLE, average_monthly=0.0, seasonal_factor=1.0)

    # Ratios are heuristics; the reported amounts stay exact
    totals = [float(amount) for _, _, amount in series]
    average = statistics.fmean(totals)

    seasonal_totals = [float(amount) for _, month, amount in series if month in HIGH_SEASON_MONTHS]
    seasonal_factor = 1.0
    if seasonal_totals and average > 0:
        seasonal_factor = statistics.fmean(seasonal_totals) / average

    anomalies = []
    for year, month, amount in series:
        if float(amount) > average * ELEVATED_MONTH_RATIO:
            reason = "high spending" if float(amount) > average * HIGH_MONTH_RATIO else "elevated spending"
            anomalies.append(AnomalyMonth(month=month, year=year, amount=amount, reason=reason))

    return SpendingPattern(
        trend=classify_trend(totals),
        average_monthly=average,
        seasonal_factor=seasonal_factor,
        anomaly_months=anomalies,
        monthly_totals=[MonthlyTotal(month=f"{y}-{m:02d}", amount=a) for y, m, a in series],
        has_seasonal_data=bool(seasonal_totals) and average > 0,
    )
