from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord
from household_analytics.utils.bucketing import GRANULARITIES, as_utc_naive, category_breakdown, filter_range, total_amount


@dataclass
class DateRange:
    """Inclusive on both ends."""

    start: datetime
    end: datetime

    def validate(self, label: str = "range") -> "DateRange":
        if self.start is None or self.end is None:
            raise InvalidInputError(f"{label} needs both a start and an end date")
        self.start = as_utc_naive(self.start)
        self.end = as_utc_naive(self.end)
        if self.start > self.end:
            raise InvalidInputError(f"{label} starts after it ends")
        return self


@dataclass
class CategoryChange:
    category: str
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percentage: float


@dataclass
class PeriodComparison:
    comparison_type: str
    current_total: Decimal
    previous_total: Decimal
    change: Decimal
    change_percentage: float
    category_changes: List[CategoryChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_amount"] = {
            "current": data.pop("current_total"),
            "previous": data.pop("previous_total"),
            "change": data.pop("change"),
            "change_percentage": data.pop("change_percentage"),
        }
        return data


def percentage_change(current: Decimal, previous: Decimal) -> float:
    # A zero baseline reports 0 rather than an unbounded growth figure
    if previous <= 0:
        return 0.0
    return float((current - previous) / previous * 100)


def compare_periods(
    records: Iterable[ExpenseRecord],
    current: DateRange,
    previous: DateRange,
    comparison_type: str = "month",
) -> PeriodComparison:
    if comparison_type not in GRANULARITIES:
        raise InvalidInputError(f"Unknown comparison type '{comparison_type}'")
    current.validate("current period")
    previous.validate("previous period")

    records = list(records)
    current_records = filter_range(records, current.start, current.end)
    previous_records = filter_range(records, previous.start, previous.end)

    current_total = total_amount(current_records)
    previous_total = total_amount(previous_records)

    current_by_category = {c.category: c.amount for c in category_breakdown(current_records)}
    previous_by_category = {c.category: c.amount for c in category_breakdown(previous_records)}

    changes = []
    for category in set(current_by_category) | set(previous_by_category):
        now_amount = current_by_category.get(category, Decimal("0"))
        before_amount = previous_by_category.get(category, Decimal("0"))
        if before_amount > 0:
            pct = percentage_change(now_amount, before_amount)
        else:
            pct = 100.0 if now_amount > 0 else 0.0
        changes.append(
            CategoryChange(
                category=category,
                current=now_amount,
                previous=before_amount,
                change=now_amount - before_amount,
                change_percentage=pct,
            )
        )
    changes.sort(key=lambda item: (-abs(item.change), item.category))

    return PeriodComparison(
        comparison_type=comparison_type,
        current_total=current_total,
        previous_total=previous_total,
        change=current_total - previous_total,
        change_percentage=percentage_change(current_total, previous_total),
        category_changes=changes,
    )
