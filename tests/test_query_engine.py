from datetime import datetime
from decimal import Decimal

import pytest

from conftest import FAMILY_ID, NOW, FakeStore, expense
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.utils.query_engine import (
    Intent,
    QueryEngine,
    QuerySection,
    normalize_question,
    parse_amount,
)


def run(store, question):
    return QueryEngine(FAMILY_ID, store, now=NOW).run(question)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("tiết kiệm 5 triệu mỗi tháng", Decimal("5000000")),
        ("2tr", Decimal("2000000")),
        ("about 500k", Decimal("500000")),
        ("save 3 million", Decimal("3000000")),
        ("1,5 triệu", Decimal("1500000")),
        ("1 tỷ", Decimal("1000000000")),
        ("2.000.000 đồng", Decimal("2000000")),
        ("tháng 3 tiết kiệm 2 triệu", Decimal("2000000")),
        ("no amount here", None),
        ("tiết kiệm 500.000vnđ", Decimal("500000")),
        ("tiết kiệm 2000000đ mỗi tháng", Decimal("2000000")),
        ("2000000vnd", Decimal("2000000")),
        ("3 triệu đồng", Decimal("3000000")),
    ],
)
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


def test_savings_plan_with_attached_currency_suffix(store):
    result = run(store, "tôi muốn tiết kiệm 2000000đ mỗi tháng")
    assert result.matched_intents == ["savings_plan"]
    assert result.sections[0].data["target_amount"] == Decimal("2000000")


def test_normalize_question():
    assert normalize_question("  Khoản   CHI\tlớn ") == "khoản chi lớn"


def test_empty_question_is_rejected(store):
    with pytest.raises(InvalidInputError):
        run(store, "   ")


def test_largest_expense(store):
    result = run(store, "Khoản chi lớn nhất là gì?")
    assert result.matched_intents == ["largest_expense"]
    section = result.sections[0]
    assert section.data["expense"]["id"] == "e2"
    assert section.data["expense"]["category"] == "Wedding"


def test_large_expenses_threshold(store):
    result = run(store, "show me large expenses")
    assert result.matched_intents == ["large_expenses"]
    data = result.sections[0].data
    assert data["count"] == 1
    assert data["total_amount"] == Decimal("2000000")


def test_several_intents_accumulate_in_order(store):
    result = run(store, "Compare food spending by category")
    assert result.matched_intents == ["category_total", "category_breakdown", "month_comparison"]

    food = result.sections[0].data["categories"][0]
    assert (food["category"], food["amount"], food["count"]) == ("Food", Decimal("800000"), 2)

    comparison = result.sections[2].data
    assert comparison["total_amount"]["current"] == 0
    assert comparison["total_amount"]["previous"] == Decimal("300000")


def test_category_total_for_last_month(store):
    result = run(store, "How much on food last month?")
    assert result.matched_intents == ["category_total"]
    data = result.sections[0].data
    assert data["range"] == "last_month"
    assert data["start"] == datetime(2024, 2, 1)
    assert data["categories"][0]["amount"] == Decimal("300000")


def test_unmatched_question_returns_overview(store):
    result = run(store, "hello there")
    assert result.matched_intents == []
    assert [s.intent for s in result.sections] == ["overview"]
    data = result.sections[0].data
    assert data["total_amount"] == Decimal("2800000")
    assert data["count"] == 3
    assert data["largest_expense"]["id"] == "e2"


def test_person_expenses_by_owner_and_description(members):
    store = FakeStore(
        expenses=[
            expense("a", 400000, "Food", datetime(2024, 3, 1), owner_id="u-mother"),
            expense("b", 250000, "Gifts", datetime(2024, 3, 2), owner_id="u-father", description="Mua quà sinh nhật cho Lan"),
            expense("c", 900000, "Fuel", datetime(2024, 3, 3), owner_id="u-father"),
        ],
        members=members,
    )
    result = run(store, "Lan đã chi bao nhiêu?")
    assert result.matched_intents == ["person_expenses"]
    person = result.sections[0].data["people"][0]
    assert person["name"] == "Trần Thị Lan"
    assert person["count"] == 2
    assert person["total_amount"] == Decimal("650000")


def test_member_breakdown_falls_back_to_recorder(members):
    store = FakeStore(
        expenses=[
            expense("a", 400000, "Food", datetime(2024, 3, 1), owner_id="u-mother"),
            expense("b", 900000, "Fuel", datetime(2024, 3, 3), user_id="u-father"),
        ],
        members=members,
    )
    result = run(store, "chi tiêu của từng người")
    assert result.matched_intents == ["member_breakdown"]
    stats = result.sections[0].data["members"]
    assert [(s["member_id"], s["total_amount"]) for s in stats] == [
        ("u-father", Decimal("900000")),
        ("u-mother", Decimal("400000")),
    ]


def test_savings_plan_needs_an_amount(store):
    result = run(store, "Tôi muốn tiết kiệm 5 triệu mỗi tháng")
    assert result.matched_intents == ["savings_plan"]
    data = result.sections[0].data
    assert data["target_amount"] == Decimal("5000000")
    assert [c["category"] for c in data["reducible_categories"]] == ["Wedding", "Food"]
    assert data["needs_more"] > 0

    assert "savings_plan" not in run(store, "how can I save more").matched_intents


def test_spending_trend_window(store):
    result = run(store, "xu hướng chi tiêu gần đây")
    assert "spending_trend" in result.matched_intents
    data = result.sections[0].data
    assert data["days"] == 30
    assert data["count"] == 0


def test_custom_intents_can_be_plugged_in(store):
    echo = Intent("echo", lambda ctx: "ping" in ctx.question, lambda ctx: QuerySection("echo", "Echo", ctx.question))
    result = QueryEngine(FAMILY_ID, store, now=NOW, intents=[echo]).run("PING")
    assert result.matched_intents == ["echo"]
    assert result.sections[0].summary == "ping"
