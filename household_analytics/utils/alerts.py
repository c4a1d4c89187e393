"""
Budget alerts and recurring-expense reminders for the current month.

Both checks look only at calendar months around ``now``: the budget check at
the month in progress, the reminder check at what was paid last month but not
yet this month.
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from household_analytics.core.config import settings
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord
from household_analytics.utils.bucketing import add_months, as_utc_naive, category_breakdown, filter_range, total_amount

logger = logging.getLogger(__name__)

ALERT_CRITICAL = "critical"
ALERT_WARNING = "warning"
ALERT_INFO = "info"
REMINDER = "reminder"


@dataclass
class Alert:
    type: str
    title: str
    message: str
    remaining: Optional[Decimal] = None
    category: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass
class BudgetSummary:
    total_spent: Decimal
    monthly_budget: Decimal
    percentage_used: float
    remaining: Decimal
    days_remaining: int


@dataclass
class BudgetReport:
    alerts: List[Alert]
    summary: BudgetSummary

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Reminder:
    type: str
    title: str
    message: str
    category: Optional[str] = None
    estimated_amount: Optional[Decimal] = None


@dataclass
class ReminderReport:
    reminders: List[Reminder] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_end(value: datetime) -> datetime:
    """Last second of the month containing ``value``."""
    return add_months(month_start(value), 1) - timedelta(seconds=1)


def budget_alerts(
    records: Iterable[ExpenseRecord],
    now: Optional[datetime] = None,
    monthly_budget: Optional[Decimal] = None,
) -> BudgetReport:
    now = as_utc_naive(now) if now else datetime.utcnow()
    budget = settings.MONTHLY_BUDGET if monthly_budget is None else Decimal(str(monthly_budget))
    if budget <= 0:
        raise InvalidInputError("monthly budget must be positive")

    end = month_end(now)
    current = filter_range(records, month_start(now), end)
    spent = total_amount(current)
    remaining = budget - spent
    percentage = float(spent / budget * 100)

    alerts = []
    if percentage >= settings.BUDGET_CRITICAL_THRESHOLD:
        alerts.append(
            Alert(
                type=ALERT_CRITICAL,
                title="Budget almost used up",
                message=f"{percentage:.1f}% of this month's budget is spent, {remaining:,.0f} left.",
                remaining=remaining,
            )
        )
    elif percentage >= settings.BUDGET_WARNING_THRESHOLD:
        alerts.append(
            Alert(
                type=ALERT_WARNING,
                title="Budget running low",
                message=f"{percentage:.1f}% of this month's budget is spent.",
                remaining=remaining,
            )
        )

    # Uncategorised spend has no category budget to exceed
    category_limit = budget / settings.BUDGET_CATEGORY_COUNT * Decimal(str(settings.CATEGORY_OVERSPEND_MULTIPLIER))
    for item in category_breakdown(r for r in current if r.category):
        if item.amount > category_limit:
            alerts.append(
                Alert(
                    type=ALERT_INFO,
                    title=f"High spending: {item.category}",
                    message=f"{item.category} reached {item.amount:,.0f} this month, well above the usual share.",
                    category=item.category,
                    amount=item.amount,
                )
            )

    if alerts:
        logger.info(f"{len(alerts)} budget alert(s) at {percentage:.1f}% of budget")

    return BudgetReport(
        alerts=alerts,
        summary=BudgetSummary(
            total_spent=spent,
            monthly_budget=budget,
            percentage_used=round(percentage, 1),
            remaining=remaining,
            days_remaining=math.ceil((end - now).total_seconds() / 86400),
        ),
    )


def recurring_reminders(records: Iterable[ExpenseRecord], now: Optional[datetime] = None) -> ReminderReport:
    """
    Remind about categories paid several times last month that have not shown
    up yet this month, plus a month-end review note near the end of the month.
    """
    now = as_utc_naive(now) if now else datetime.utcnow()
    records = list(records)
    this_month = month_start(now)
    last_month = add_months(this_month, -1)

    totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    counts: Dict[str, int] = defaultdict(int)
    for record in filter_range(records, last_month, this_month):
        totals[record.category_label] += record.amount
        counts[record.category_label] += 1

    paid = {record.category_label for record in filter_range(records, this_month)}

    reminders = []
    for category in sorted(totals):
        if counts[category] < settings.RECURRING_MIN_OCCURRENCES or category in paid:
            continue
        estimate = (totals[category] / counts[category]).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        reminders.append(
            Reminder(
                type=REMINDER,
                title=f"Reminder: {category}",
                message=f"You usually spend about {estimate:,.0f} on {category} each month.",
                category=category,
                estimated_amount=estimate,
            )
        )

    if now.day >= settings.MONTH_END_REMINDER_DAY:
        reminders.append(
            Reminder(
                type=ALERT_INFO,
                title="End of the month",
                message="Review this month's expenses and plan the budget for next month.",
            )
        )
    return ReminderReport(reminders=reminders)


class AlertService:
    def __init__(self, family_id: str, store: Any, now: Optional[datetime] = None) -> None:
        if not family_id:
            raise InvalidInputError("family_id is required")
        self.family_id = family_id
        self.store = store
        self.now = as_utc_naive(now) if now else datetime.utcnow()

    def _records(self) -> List[ExpenseRecord]:
        return self.store.list_expenses(self.family_id, settings.EXPENSE_FETCH_LIMIT)

    def budget(self, monthly_budget: Optional[Decimal] = None) -> BudgetReport:
        return budget_alerts(self._records(), self.now, monthly_budget)

    def reminders(self) -> ReminderReport:
        return recurring_reminders(self._records(), self.now)
