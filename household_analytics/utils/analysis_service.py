from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from household_analytics.core.config import settings
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpensePublic, ExpenseRecord
from household_analytics.models.prediction import Prediction
from household_analytics.utils.bucketing import (
    CategoryTotal,
    TimeBucket,
    as_utc_naive,
    bucket_records,
    category_breakdown,
    filter_range,
    period_bounds,
    total_amount,
)
from household_analytics.utils.comparator import DateRange, PeriodComparison
from household_analytics.utils.comparator import compare_periods as compare_ranges
from household_analytics.utils.forecast import ExpensePredictor
from household_analytics.utils.insights import call_with_timeout, to_jsonable

logger = logging.getLogger(__name__)

DAILY_ANOMALY_RATIO = 2.0
DOMINANT_CATEGORY_SHARE = 40.0

INSIGHTS_UNAVAILABLE = "AI insights are not available right now."


@dataclass
class DailyAnomaly:
    date: str
    amount: Decimal
    reason: str


@dataclass
class PeriodAnalysis:
    start: datetime
    end: datetime
    total_amount: Decimal
    count: int
    category_breakdown: List[CategoryTotal] = field(default_factory=list)
    daily_stats: List[TimeBucket] = field(default_factory=list)
    weekly_stats: List[TimeBucket] = field(default_factory=list)
    monthly_stats: List[TimeBucket] = field(default_factory=list)
    prediction: Optional[Prediction] = None
    anomalies: List[DailyAnomaly] = field(default_factory=list)
    ai_insights: str = ""
    insights_source: str = "none"
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"from": self.start, "to": self.end},
            "total_amount": self.total_amount,
            "count": self.count,
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "daily_stats": [b.to_dict() for b in self.daily_stats],
            "weekly_stats": [b.to_dict() for b in self.weekly_stats],
            "monthly_stats": [b.to_dict() for b in self.monthly_stats],
            "prediction": self.prediction.model_dump(mode="json") if self.prediction else None,
            "anomalies": [to_jsonable(a) for a in self.anomalies],
            "ai_insights": self.ai_insights,
            "insights_source": self.insights_source,
            "recommendations": self.recommendations,
        }


@dataclass
class PeriodComparisonReport:
    current: PeriodAnalysis
    previous: PeriodAnalysis
    comparison: PeriodComparison

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict(),
            "comparison": self.comparison.to_dict(),
        }


@dataclass
class DetailedData:
    period: str
    value: str
    start: datetime
    end: datetime
    expenses: List[ExpensePublic]
    total_amount: Decimal
    count: int
    average_amount: Decimal
    category_breakdown: List[CategoryTotal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "value": self.value,
            "range": {"from": self.start, "to": self.end},
            "expenses": [e.model_dump(mode="json") for e in self.expenses],
            "summary": {
                "total_amount": self.total_amount,
                "count": self.count,
                "average_amount": self.average_amount,
                "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            },
        }


def daily_anomalies(daily: List[TimeBucket]) -> List[DailyAnomaly]:
    """Days whose spend exceeds twice the average of days that had any spend."""
    if not daily:
        return []
    average = statistics.fmean(float(b.total_amount) for b in daily)
    return [
        DailyAnomaly(date=b.key, amount=b.total_amount, reason="Unusually high spending for a single day")
        for b in daily
        if float(b.total_amount) > average * DAILY_ANOMALY_RATIO
    ]


def build_recommendations(
    breakdown: List[CategoryTotal],
    anomalies: List[DailyAnomaly],
    prediction: Optional[Prediction],
    total: Decimal,
) -> List[str]:
    recommendations = []
    if breakdown and breakdown[0].percentage >= DOMINANT_CATEGORY_SHARE:
        top = breakdown[0]
        recommendations.append(
            f"{top.category} accounts for {top.percentage:.1f}% of spending in this period. "
            f"Look for savings there first."
        )
    if anomalies:
        recommendations.append(
            f"{len(anomalies)} day(s) had unusually high spending. Check whether those expenses were planned."
        )
    if prediction is not None and total > 0 and prediction.predicted_amount > total:
        recommendations.append(
            f"Next month is forecast at {prediction.predicted_amount:,.0f}. Set aside a buffer in the budget."
        )
    if not recommendations:
        recommendations.append("Spending looks balanced. Keep tracking expenses regularly.")
    return recommendations


class ExpenseAnalysisService:
    def __init__(
        self,
        family_id: str,
        store: Any,
        insight_generator: Any = None,
        now: Optional[datetime] = None,
        insight_timeout: Optional[float] = None,
    ) -> None:
        if not family_id:
            raise InvalidInputError("family_id is required")
        self.family_id = family_id
        self.store = store
        self.insight_generator = insight_generator
        self.now = as_utc_naive(now) if now else datetime.utcnow()
        self.insight_timeout = insight_timeout

    def _records(self) -> List[ExpenseRecord]:
        return self.store.list_expenses(self.family_id, settings.EXPENSE_FETCH_LIMIT)

    def analyze_by_period(
        self,
        start: datetime,
        end: datetime,
        include_predictions: bool = False,
        with_insights: bool = True,
        records: Optional[List[ExpenseRecord]] = None,
    ) -> PeriodAnalysis:
        period = DateRange(start=start, end=end).validate("period")
        records = self._records() if records is None else records
        selected = filter_range(records, period.start, period.end)

        total = total_amount(selected)
        breakdown = category_breakdown(selected)
        daily = bucket_records(selected, "day")
        anomalies = daily_anomalies(daily)

        prediction = None
        if include_predictions:
            predictor = ExpensePredictor(self.family_id, self.store, now=self.now)
            prediction = predictor.predict_next_month_linear()

        analysis = PeriodAnalysis(
            start=period.start,
            end=period.end,
            total_amount=total,
            count=len(selected),
            category_breakdown=breakdown,
            daily_stats=daily,
            weekly_stats=bucket_records(selected, "week"),
            monthly_stats=bucket_records(selected, "month"),
            prediction=prediction,
            anomalies=anomalies,
            recommendations=build_recommendations(breakdown, anomalies, prediction, total),
        )

        if with_insights:
            self._attach_insights(analysis)
        return analysis

    def _attach_insights(self, analysis: PeriodAnalysis) -> None:
        bundle = {
            "total_amount": analysis.total_amount,
            "period": {"from": analysis.start, "to": analysis.end},
            "category_stats": [
                {"category": c.category, "amount": c.amount, "count": c.count}
                for c in analysis.category_breakdown
            ],
            "monthly_stats": [{"month": b.key, "amount": b.total_amount} for b in analysis.monthly_stats],
        }

        text = None
        if self.insight_generator is not None:
            text = call_with_timeout(self.insight_generator.generate_insights, to_jsonable(bundle), self.insight_timeout)

        if text:
            analysis.ai_insights = text
            analysis.insights_source = "ai"
            return

        summary = f" Total spending was {analysis.total_amount:,.0f} across {analysis.count} expenses"
        if analysis.category_breakdown:
            top = analysis.category_breakdown[0]
            summary += f", led by {top.category} ({top.percentage:.1f}%)"
        analysis.ai_insights = INSIGHTS_UNAVAILABLE + summary + "."
        analysis.insights_source = "fallback"

    def compare_periods(
        self,
        comparison_type: str,
        current: DateRange,
        previous: DateRange,
    ) -> PeriodComparisonReport:
        records = self._records()
        comparison = compare_ranges(records, current, previous, comparison_type)
        return PeriodComparisonReport(
            current=self.analyze_by_period(current.start, current.end, with_insights=False, records=records),
            previous=self.analyze_by_period(previous.start, previous.end, with_insights=False, records=records),
            comparison=comparison,
        )

    def get_detailed_data(self, period: str, value: str) -> DetailedData:
        start, end = period_bounds(period, value)
        selected = [
            r for r in self._records()
            if r.timestamp is not None and start <= as_utc_naive(r.timestamp) < end
        ]
        selected.sort(key=lambda r: as_utc_naive(r.timestamp), reverse=True)

        total = total_amount(selected)
        count = len(selected)
        return DetailedData(
            period=period,
            value=value,
            start=start,
            end=end,
            expenses=[ExpensePublic.from_record(r) for r in selected],
            total_amount=total,
            count=count,
            average_amount=total / count if count else Decimal("0"),
            category_breakdown=category_breakdown(selected),
        )
