"""
Intent-routed question answering over a family's expenses.

A question is normalized once and checked against an ordered list of intents.
Every intent whose predicate matches contributes its own section to the
result; handlers only read the shared context so they can be tested alone.
Narrative synthesis of the assembled sections happens in the chat router.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from household_analytics.core.config import settings
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord
from household_analytics.models.member import FamilyMember
from household_analytics.utils.bucketing import (
    add_months,
    as_utc_naive,
    bucket_records,
    category_breakdown,
    filter_range,
    total_amount,
)
from household_analytics.utils.comparator import DateRange, compare_periods

LARGE_EXPENSE_THRESHOLD = Decimal("1000000")
OPTIMIZATION_THRESHOLD = Decimal("500000")
LARGE_EXPENSE_LIMIT = 10
TOP_CATEGORY_LIMIT = 5
TREND_DAYS = 30
MONTHS_PER_YEAR = 12

LARGEST_KEYWORDS = ("lớn nhất", "cao nhất", "đắt nhất", "largest", "biggest", "most expensive", "highest")
LARGE_KEYWORDS = ("khoản chi lớn", "chi tiêu lớn", "các khoản lớn", "large expense", "big expense", "large purchase")
CATEGORY_BREAKDOWN_KEYWORDS = ("danh mục", "theo loại", "category", "categories")
MEMBER_KEYWORDS = ("thành viên", "từng người", "mỗi người", "member", "each person", "per person")
COMPARISON_KEYWORDS = ("so sánh", "so với", "compare", "comparison", "versus", " vs ")
MONTHLY_KEYWORDS = ("tháng này", "this month", "thống kê tháng", "monthly stats", "month so far")
TREND_KEYWORDS = ("xu hướng", "gần đây", "30 ngày", "trend", "recent", "last 30 days")
OPTIMIZATION_KEYWORDS = ("tối ưu", "cắt giảm", "giảm chi", "optimi", "cut back", "reduce spending", "cut spending")
SAVINGS_KEYWORDS = ("tiết kiệm", "để dành", "save", "saving")

THIS_MONTH_KEYWORDS = ("tháng này", "this month")
LAST_MONTH_KEYWORDS = ("tháng trước", "last month", "previous month")
THIS_YEAR_KEYWORDS = ("năm nay", "this year")

_UNIT_MULTIPLIERS = {
    "tỷ": Decimal("1000000000"),
    "billion": Decimal("1000000000"),
    "bn": Decimal("1000000000"),
    "triệu": Decimal("1000000"),
    "million": Decimal("1000000"),
    "mil": Decimal("1000000"),
    "tr": Decimal("1000000"),
    "m": Decimal("1000000"),
    "nghìn": Decimal("1000"),
    "ngàn": Decimal("1000"),
    "k": Decimal("1000"),
}
# Currency suffixes are often glued to the number ("500.000vnđ", "2000000đ")
_CURRENCY_SUFFIXES = ("vnđ", "vnd", "đồng", "dong", "đ")
_AMOUNT = re.compile(
    r"(\d[\d.,]*)\s*(" + "|".join(sorted(_UNIT_MULTIPLIERS, key=len, reverse=True)) + r")?"
    r"(?:\s*(?:" + "|".join(_CURRENCY_SUFFIXES) + r"))?(?!\w)"
)


@dataclass
class QuerySection:
    intent: str
    title: str
    summary: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult:
    question: str
    matched_intents: List[str]
    sections: List[QuerySection]


@dataclass
class QueryContext:
    question: str
    records: List[ExpenseRecord]
    members: List[FamilyMember]
    now: datetime

    def member_name(self, member_id: Optional[str]) -> Optional[str]:
        for member in self.members:
            if member.id == member_id:
                return member.full_name
        return None


@dataclass(frozen=True)
class Intent:
    name: str
    predicate: Callable[[QueryContext], bool]
    handler: Callable[[QueryContext], QuerySection]


def normalize_question(question: str) -> str:
    text = unicodedata.normalize("NFC", question).lower()
    return " ".join(text.split())


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _contains_word(text: str, word: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(word) + r"(?!\w)", text) is not None


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Read a money amount such as ``5 triệu``, ``2tr``, ``500k``, ``3 million``
    or ``2.000.000đ``. Amounts with a unit win over plain numbers.
    """
    plain = None
    for match in _AMOUNT.finditer(normalize_question(text)):
        number, unit = match.group(1).rstrip(".,"), match.group(2)
        if unit:
            # With a unit the separator is a decimal point ("1,5 triệu")
            number = number.replace(",", ".")
            if number.count(".") > 1:
                number = number.replace(".", "")
            try:
                return Decimal(number) * _UNIT_MULTIPLIERS[unit]
            except InvalidOperation:
                continue
        if plain is None:
            try:
                plain = Decimal(number.replace(".", "").replace(",", ""))
            except InvalidOperation:
                continue
    return plain


def _record_dict(ctx: QueryContext, record: ExpenseRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "amount": record.amount,
        "category": record.category_label,
        "description": record.description or "",
        "timestamp": record.timestamp,
        "member": ctx.member_name(attributed_member(record)),
    }


def attributed_member(record: ExpenseRecord) -> Optional[str]:
    """The member a spend belongs to: its owner, else whoever recorded it."""
    return record.owner_id or record.user_id


def _recency(record: ExpenseRecord) -> datetime:
    return as_utc_naive(record.timestamp) if record.timestamp else datetime.min


def _month_range(ctx: QueryContext, months_back: int = 0) -> DateRange:
    start = add_months(ctx.now.replace(day=1, hour=0, minute=0, second=0, microsecond=0), -months_back)
    return DateRange(start=start, end=add_months(start, 1) - timedelta(microseconds=1))


def _by_amount(records: List[ExpenseRecord]) -> List[ExpenseRecord]:
    return sorted(records, key=lambda r: (r.amount, _recency(r)), reverse=True)


def largest_expense(ctx: QueryContext) -> QuerySection:
    if not ctx.records:
        return QuerySection("largest_expense", "Largest expense", "No expenses recorded yet", {"expense": None})
    record = max(ctx.records, key=lambda r: (r.amount, _recency(r)))
    return QuerySection(
        intent="largest_expense",
        title="Largest expense",
        summary=f"Largest single expense is {record.amount:,.0f} ({record.category_label})",
        data={"expense": _record_dict(ctx, record)},
    )


def large_expenses(ctx: QueryContext) -> QuerySection:
    matches = _by_amount([r for r in ctx.records if r.amount >= LARGE_EXPENSE_THRESHOLD])
    top = matches[:LARGE_EXPENSE_LIMIT]
    total = total_amount(top)
    return QuerySection(
        intent="large_expenses",
        title=f"Expenses of at least {LARGE_EXPENSE_THRESHOLD:,.0f}",
        summary=f"{len(top)} large expenses totalling {total:,.0f}",
        data={
            "threshold": LARGE_EXPENSE_THRESHOLD,
            "count": len(top),
            "total_amount": total,
            "expenses": [_record_dict(ctx, r) for r in top],
        },
    )


def _named_categories(ctx: QueryContext) -> List[str]:
    labels = sorted({r.category_label for r in ctx.records})
    return [label for label in labels if _contains_word(ctx.question, normalize_question(label))]


def _time_range(ctx: QueryContext) -> Tuple[str, Optional[DateRange]]:
    if _contains_any(ctx.question, LAST_MONTH_KEYWORDS):
        return "last_month", _month_range(ctx, 1)
    if _contains_any(ctx.question, THIS_MONTH_KEYWORDS):
        return "this_month", _month_range(ctx)
    if _contains_any(ctx.question, THIS_YEAR_KEYWORDS):
        return "this_year", DateRange(start=datetime(ctx.now.year, 1, 1), end=ctx.now)
    return "all_time", None


def category_total(ctx: QueryContext) -> QuerySection:
    label, period = _time_range(ctx)
    records = ctx.records if period is None else filter_range(ctx.records, period.start, period.end)
    totals = []
    for category in _named_categories(ctx):
        matching = [r for r in records if r.category_label == category]
        totals.append({"category": category, "amount": total_amount(matching), "count": len(matching)})
    summary = ", ".join(f"{t['category']}: {t['amount']:,.0f} ({t['count']} expenses)" for t in totals)
    return QuerySection(
        intent="category_total",
        title=f"Category totals ({label.replace('_', ' ')})",
        summary=summary,
        data={
            "range": label,
            "start": period.start if period else None,
            "end": period.end if period else None,
            "categories": totals,
        },
    )


def category_breakdown_section(ctx: QueryContext) -> QuerySection:
    breakdown = category_breakdown(ctx.records)
    return QuerySection(
        intent="category_breakdown",
        title="Spending by category",
        summary=f"{len(breakdown)} categories, top: "
        + (f"{breakdown[0].category} ({breakdown[0].percentage:.1f}%)" if breakdown else "none"),
        data={"total_amount": total_amount(ctx.records), "categories": [c.to_dict() for c in breakdown]},
    )


def member_breakdown(ctx: QueryContext) -> QuerySection:
    stats = []
    for member in ctx.members:
        owned = [r for r in ctx.records if attributed_member(r) == member.id]
        stats.append(
            {
                "member_id": member.id,
                "name": member.full_name,
                "role": member.role,
                "total_amount": total_amount(owned),
                "count": len(owned),
            }
        )
    stats.sort(key=lambda s: (-s["total_amount"], s["name"]))
    return QuerySection(
        intent="member_breakdown",
        title="Spending by family member",
        summary="; ".join(f"{s['name']}: {s['total_amount']:,.0f} ({s['count']} expenses)" for s in stats),
        data={"members": stats},
    )


def _name_variants(member: FamilyMember) -> List[str]:
    full = normalize_question(member.full_name)
    parts = full.split()
    # Vietnamese names put the given name last
    return [full] + ([parts[-1]] if len(parts) > 1 and len(parts[-1]) > 1 else [])


def _named_members(ctx: QueryContext) -> List[FamilyMember]:
    return [m for m in ctx.members if any(_contains_word(ctx.question, v) for v in _name_variants(m))]


def person_expenses(ctx: QueryContext) -> QuerySection:
    people = []
    for member in _named_members(ctx):
        variants = _name_variants(member)
        matching = [
            r for r in ctx.records
            if attributed_member(r) == member.id
            or any(_contains_word(normalize_question(r.description or ""), v) for v in variants)
        ]
        matching.sort(key=_recency, reverse=True)
        people.append(
            {
                "member_id": member.id,
                "name": member.full_name,
                "total_amount": total_amount(matching),
                "count": len(matching),
                "expenses": [_record_dict(ctx, r) for r in matching],
            }
        )
    return QuerySection(
        intent="person_expenses",
        title="Expenses by person",
        summary="; ".join(f"{p['name']}: {p['total_amount']:,.0f} ({p['count']} expenses)" for p in people),
        data={"people": people},
    )


def month_comparison(ctx: QueryContext) -> QuerySection:
    comparison = compare_periods(ctx.records, _month_range(ctx), _month_range(ctx, 1), "month")
    direction = "up" if comparison.change >= 0 else "down"
    return QuerySection(
        intent="month_comparison",
        title="This month compared to last month",
        summary=(
            f"This month {comparison.current_total:,.0f} vs last month {comparison.previous_total:,.0f}, "
            f"{direction} {abs(comparison.change):,.0f} ({comparison.change_percentage:.1f}%)"
        ),
        data=comparison.to_dict(),
    )


def monthly_stats(ctx: QueryContext) -> QuerySection:
    period = _month_range(ctx)
    records = filter_range(ctx.records, period.start, period.end)
    total = total_amount(records)
    return QuerySection(
        intent="monthly_stats",
        title=f"Statistics for {period.start:%Y-%m}",
        summary=f"{len(records)} expenses totalling {total:,.0f} this month",
        data={
            "month": f"{period.start:%Y-%m}",
            "total_amount": total,
            "count": len(records),
            "categories": [c.to_dict() for c in category_breakdown(records)],
        },
    )


def spending_trend(ctx: QueryContext) -> QuerySection:
    records = filter_range(ctx.records, ctx.now - timedelta(days=TREND_DAYS), ctx.now)
    total = total_amount(records)
    average_daily = total / TREND_DAYS
    return QuerySection(
        intent="spending_trend",
        title=f"Last {TREND_DAYS} days",
        summary=f"{len(records)} expenses totalling {total:,.0f}, {average_daily:,.0f} per day on average",
        data={
            "days": TREND_DAYS,
            "total_amount": total,
            "count": len(records),
            "average_daily": average_daily,
            "daily": [b.to_dict() for b in bucket_records(records, "day")],
        },
    )


def _twelve_month_average(ctx: QueryContext) -> Decimal:
    window = filter_range(ctx.records, add_months(ctx.now, -MONTHS_PER_YEAR), ctx.now)
    return total_amount(window) / MONTHS_PER_YEAR


def optimization(ctx: QueryContext) -> QuerySection:
    large = _by_amount([r for r in ctx.records if r.amount >= OPTIMIZATION_THRESHOLD])[:LARGE_EXPENSE_LIMIT]
    top = category_breakdown(ctx.records)[:TOP_CATEGORY_LIMIT]
    return QuerySection(
        intent="optimization",
        title="Where spending can be optimized",
        summary=(
            f"Top category: {top[0].category if top else 'none'}; "
            f"{len(large)} expenses of at least {OPTIMIZATION_THRESHOLD:,.0f}"
        ),
        data={
            "monthly_average": _twelve_month_average(ctx),
            "top_categories": [c.to_dict() for c in top],
            "large_expenses": [_record_dict(ctx, r) for r in large],
            "large_expenses_total": total_amount(large),
        },
    )


def savings_plan(ctx: QueryContext) -> QuerySection:
    target = parse_amount(ctx.question) or Decimal("0")
    rate = Decimal(str(settings.DISCRETIONARY_REDUCTION_RATE))
    essential = {c.strip().lower() for c in settings.ESSENTIAL_CATEGORIES}

    window = filter_range(ctx.records, add_months(ctx.now, -MONTHS_PER_YEAR), ctx.now)
    reducible = []
    for item in category_breakdown(window):
        if item.category.strip().lower() in essential:
            continue
        monthly = item.amount / MONTHS_PER_YEAR
        reducible.append({"category": item.category, "monthly_amount": monthly, "potential_savings": monthly * rate})
    reducible.sort(key=lambda c: (-c["potential_savings"], c["category"]))
    reducible = reducible[:TOP_CATEGORY_LIMIT]

    potential = sum((c["potential_savings"] for c in reducible), Decimal("0"))
    needs_more = max(Decimal("0"), target - potential)
    return QuerySection(
        intent="savings_plan",
        title=f"Plan to save {target:,.0f} per month",
        summary=(
            f"Cutting the top categories saves about {potential:,.0f} per month"
            + (f", {needs_more:,.0f} short of the target" if needs_more > 0 else ", enough for the target")
        ),
        data={
            "target_amount": target,
            "monthly_average": total_amount(window) / MONTHS_PER_YEAR,
            "reducible_categories": reducible,
            "total_potential_savings": potential,
            "needs_more": needs_more,
        },
    )


def overview(ctx: QueryContext) -> QuerySection:
    total = total_amount(ctx.records)
    month = _month_range(ctx)
    current = filter_range(ctx.records, month.start, month.end)
    largest = max(ctx.records, key=lambda r: (r.amount, _recency(r))) if ctx.records else None
    return QuerySection(
        intent="overview",
        title="Spending overview",
        summary=f"{len(ctx.records)} expenses totalling {total:,.0f}",
        data={
            "total_amount": total,
            "count": len(ctx.records),
            "current_month_total": total_amount(current),
            "current_month_count": len(current),
            "average_transaction": total / len(ctx.records) if ctx.records else Decimal("0"),
            "largest_expense": _record_dict(ctx, largest) if largest else None,
            "top_categories": [c.to_dict() for c in category_breakdown(ctx.records)[:TOP_CATEGORY_LIMIT]],
        },
    )


def _asks_large(ctx: QueryContext) -> bool:
    return _contains_any(ctx.question, LARGE_KEYWORDS) and not _contains_any(ctx.question, LARGEST_KEYWORDS)


def _asks_savings(ctx: QueryContext) -> bool:
    return _contains_any(ctx.question, SAVINGS_KEYWORDS) and parse_amount(ctx.question) is not None


INTENTS: Tuple[Intent, ...] = (
    Intent("largest_expense", lambda ctx: _contains_any(ctx.question, LARGEST_KEYWORDS), largest_expense),
    Intent("large_expenses", _asks_large, large_expenses),
    Intent("category_total", lambda ctx: bool(_named_categories(ctx)), category_total),
    Intent(
        "category_breakdown",
        lambda ctx: _contains_any(ctx.question, CATEGORY_BREAKDOWN_KEYWORDS),
        category_breakdown_section,
    ),
    Intent("member_breakdown", lambda ctx: _contains_any(ctx.question, MEMBER_KEYWORDS), member_breakdown),
    Intent("person_expenses", lambda ctx: bool(_named_members(ctx)), person_expenses),
    Intent("month_comparison", lambda ctx: _contains_any(ctx.question, COMPARISON_KEYWORDS), month_comparison),
    Intent("monthly_stats", lambda ctx: _contains_any(ctx.question, MONTHLY_KEYWORDS), monthly_stats),
    Intent("spending_trend", lambda ctx: _contains_any(ctx.question, TREND_KEYWORDS), spending_trend),
    Intent("optimization", lambda ctx: _contains_any(ctx.question, OPTIMIZATION_KEYWORDS), optimization),
    Intent("savings_plan", _asks_savings, savings_plan),
)


class QueryEngine:
    def __init__(
        self,
        family_id: str,
        store: Any,
        now: Optional[datetime] = None,
        intents: Sequence[Intent] = INTENTS,
    ) -> None:
        if not family_id:
            raise InvalidInputError("family_id is required")
        self.family_id = family_id
        self.store = store
        self.now = as_utc_naive(now) if now else datetime.utcnow()
        self.intents = tuple(intents)

    def run(self, question: str) -> QueryResult:
        if not question or not question.strip():
            raise InvalidInputError("Question cannot be empty")

        ctx = QueryContext(
            question=normalize_question(question),
            records=self.store.list_expenses(self.family_id, settings.EXPENSE_FETCH_LIMIT),
            members=self.store.list_family_members(self.family_id),
            now=self.now,
        )

        matched = [intent for intent in self.intents if intent.predicate(ctx)]
        sections = [intent.handler(ctx) for intent in matched] or [overview(ctx)]
        return QueryResult(
            question=question.strip(),
            matched_intents=[intent.name for intent in matched],
            sections=sections,
        )
