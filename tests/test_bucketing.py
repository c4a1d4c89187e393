from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import expense
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.utils.bucketing import (
    add_months,
    bucket_key,
    bucket_records,
    category_breakdown,
    filter_range,
    period_bounds,
    total_amount,
    undated_records,
)

mixed_records = [
    expense("a", 120000, "Food", datetime(2023, 12, 31, 23, 0)),
    expense("b", 80000, None, datetime(2024, 1, 1, 8, 0)),
    expense("c", 450000, "Transport", datetime(2024, 2, 29, 10, 0)),
    expense("d", 99000, "Food", datetime(2024, 4, 2, 9, 30)),
    expense("e", 70000, "Food", None),
]


def test_bucket_keys_per_granularity():
    ts = datetime(2024, 2, 29, 10, 0)
    assert bucket_key(ts, "day") == "2024-02-29"
    assert bucket_key(ts, "week") == "2024-W09"
    assert bucket_key(ts, "month") == "2024-02"
    assert bucket_key(ts, "quarter") == "2024-Q1"
    assert bucket_key(ts, "year") == "2024"


def test_week_key_uses_iso_week_year():
    # 2024-12-30 is a Monday in ISO week 1 of 2025
    assert bucket_key(datetime(2024, 12, 30), "week") == "2025-W01"


def test_aware_timestamps_are_bucketed_in_utc():
    ts = datetime(2024, 3, 1, 1, 0, tzinfo=timezone(timedelta(hours=7)))
    assert bucket_key(ts, "month") == "2024-02"


def test_unknown_granularity_is_rejected():
    with pytest.raises(InvalidInputError):
        bucket_records(mixed_records, "fortnight")


@pytest.mark.parametrize("granularity", ["day", "week", "month", "quarter", "year"])
def test_bucket_totals_equal_dated_record_totals(granularity):
    buckets = bucket_records(mixed_records, granularity)
    dated_total = sum(r.amount for r in mixed_records if r.timestamp is not None)
    assert sum(b.total_amount for b in buckets) == dated_total
    assert sum(b.count for b in buckets) == 4
    assert [b.start for b in buckets] == sorted(b.start for b in buckets)


def test_undated_records_are_reported_separately():
    assert [r.id for r in undated_records(mixed_records)] == ["e"]
    assert total_amount(mixed_records) == Decimal("819000")


def test_monthly_buckets_match_end_to_end_scenario(scenario_records):
    buckets = {b.key: b for b in bucket_records(scenario_records, "month")}
    assert buckets["2024-01"].total_amount == Decimal("2500000")
    assert buckets["2024-02"].total_amount == Decimal("300000")
    assert buckets["2024-01"].count == 2


def test_category_breakdown_partitions_the_total(scenario_records):
    breakdown = category_breakdown(scenario_records)
    by_category = {c.category: c for c in breakdown}

    assert by_category["Food"].amount == Decimal("800000")
    assert by_category["Food"].count == 2
    assert by_category["Wedding"].amount == Decimal("2000000")
    assert by_category["Wedding"].count == 1
    assert [c.category for c in breakdown] == ["Wedding", "Food"]
    assert sum(c.amount for c in breakdown) == total_amount(scenario_records)
    assert sum(c.percentage for c in breakdown) == pytest.approx(100.0)


def test_missing_category_counts_as_other():
    breakdown = category_breakdown(mixed_records)
    assert {c.category for c in breakdown} == {"Food", "Transport", "Other"}


def test_category_breakdown_of_nothing_is_empty():
    assert category_breakdown([]) == []


def test_period_bounds_are_half_open():
    assert period_bounds("month", "2024-02") == (datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert period_bounds("quarter", "2024-Q4") == (datetime(2024, 10, 1), datetime(2025, 1, 1))
    assert period_bounds("week", "2024-W01") == (datetime(2024, 1, 1), datetime(2024, 1, 8))
    assert period_bounds("year", "2023") == (datetime(2023, 1, 1), datetime(2024, 1, 1))
    assert period_bounds("day", "2024-02-29") == (datetime(2024, 2, 29), datetime(2024, 3, 1))


@pytest.mark.parametrize("granularity,key", [("month", "2024-13"), ("week", "2024-05"), ("quarter", "2024-Q5"), ("day", "yesterday")])
def test_period_bounds_rejects_malformed_keys(granularity, key):
    with pytest.raises(InvalidInputError):
        period_bounds(granularity, key)


def test_filter_range_is_inclusive_and_skips_undated():
    selected = filter_range(mixed_records, datetime(2024, 1, 1, 8, 0), datetime(2024, 2, 29, 10, 0))
    assert [r.id for r in selected] == ["b", "c"]


def test_add_months_clamps_day():
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 3, 15), -3) == datetime(2023, 12, 15)
    assert add_months(datetime(2024, 11, 30), 14) == datetime(2026, 1, 30)
