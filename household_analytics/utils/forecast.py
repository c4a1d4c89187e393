"""
Expense forecasting for one family.

Two methods share the ``Prediction`` shape: a single-step linear heuristic for
next month and a multi-month projection that also asks the insight
collaborator for a narrative. Numbers are always computed locally; only the
narrative depends on the external call.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from household_analytics.core.config import settings
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord
from household_analytics.models.prediction import Prediction, PredictionAlgorithm
from household_analytics.utils.bucketing import add_months, as_utc_naive, bucket_key, filter_range, total_amount
from household_analytics.utils.insights import call_with_timeout, to_jsonable
from household_analytics.utils.patterns import (
    HIGH_SEASON_MONTHS,
    TREND_DECREASING,
    TREND_INCREASING,
    SpendingPattern,
    analyze_spending_pattern,
)

logger = logging.getLogger(__name__)

LINEAR_LOOKBACK_MONTHS = 6
AI_LOOKBACK_MONTHS = 12
LINEAR_CONFIDENCE = 0.7
AI_CONFIDENCE = 0.8
LINEAR_TREND_STEP = 0.05
AI_TREND_STEP = 0.05
DEFAULT_SEASONAL_FACTOR = 1.15

# Tet, summer holidays, year end
AI_MONTH_MULTIPLIERS = {1: 1.30, 2: 1.30, 6: 1.20, 7: 1.20, 11: 1.15, 12: 1.15}

ANOMALY_THRESHOLD = 1.2
HIGH_ANOMALY_THRESHOLD = 1.5

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"

ANOMALY_SUGGESTIONS = (
    "Review spending that is not strictly necessary",
    "Postpone large purchases if possible",
    "Check this month's budget again",
)
HIGH_SEVERITY_WARNING = "WARNING: spending is at a very high level this month"

NARRATIVE_AI = "ai"
NARRATIVE_FALLBACK = "fallback"


@dataclass
class AIForecast:
    predictions: List[Prediction]
    narrative: str
    narrative_source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": [p.model_dump(mode="json") for p in self.predictions],
            "narrative": self.narrative,
            "narrative_source": self.narrative_source,
        }


@dataclass
class AnomalyCheck:
    is_anomaly: bool
    severity: str
    message: str
    current_amount: float
    average_monthly: float
    percentage_above_average: Optional[float] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def to_amount(value: float) -> Decimal:
    """Quantize a heuristic figure back to a two-place currency amount."""
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _check_months(months: int, name: str = "months") -> None:
    if not isinstance(months, int) or months < 1 or months > 12:
        raise InvalidInputError(f"{name} must be between 1 and 12")


class ExpensePredictor:
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

    def _month_start(self, months_ahead: int) -> datetime:
        first = self.now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return add_months(first, months_ahead)

    def analyze_spending_pattern(self, months: int = 12) -> SpendingPattern:
        _check_months(months)
        return analyze_spending_pattern(self._records(), lookback_months=months, now=self.now)

    def predict_next_month_linear(self) -> Prediction:
        pattern = self.analyze_spending_pattern(LINEAR_LOOKBACK_MONTHS)
        target = self._month_start(1)

        amount = pattern.average_monthly
        if pattern.trend == TREND_INCREASING:
            amount *= 1 + LINEAR_TREND_STEP
        elif pattern.trend == TREND_DECREASING:
            amount *= 1 - LINEAR_TREND_STEP

        if target.month in HIGH_SEASON_MONTHS:
            amount *= pattern.seasonal_factor if pattern.has_seasonal_data else DEFAULT_SEASONAL_FACTOR

        prediction = Prediction(
            family_id=self.family_id,
            predicted_amount=to_amount(amount),
            predicted_month=target.month,
            predicted_year=target.year,
            confidence=LINEAR_CONFIDENCE,
            algorithm=PredictionAlgorithm.LINEAR,
            reasoning=f"Based on the {pattern.trend} trend over the last {LINEAR_LOOKBACK_MONTHS} months",
            created_at=self.now,
        )
        return self.save_prediction(prediction)

    def predict_with_ai(self, months: int = 3) -> AIForecast:
        _check_months(months)
        records = self._records()
        pattern = analyze_spending_pattern(records, lookback_months=AI_LOOKBACK_MONTHS, now=self.now)

        predictions = []
        for i in range(1, months + 1):
            target = self._month_start(i)
            amount = pattern.average_monthly
            if pattern.trend == TREND_INCREASING:
                amount *= 1 + AI_TREND_STEP * i
            elif pattern.trend == TREND_DECREASING:
                amount *= max(0.0, 1 - AI_TREND_STEP * i)
            amount *= AI_MONTH_MULTIPLIERS.get(target.month, 1.0)

            predictions.append(
                Prediction(
                    family_id=self.family_id,
                    predicted_amount=to_amount(amount),
                    predicted_month=target.month,
                    predicted_year=target.year,
                    confidence=AI_CONFIDENCE,
                    algorithm=PredictionAlgorithm.AI,
                    reasoning=f"Projected from the {pattern.trend} trend and seasonal pattern of the last {AI_LOOKBACK_MONTHS} months",
                    created_at=self.now,
                )
            )

        window = filter_range(records, add_months(self.now, -AI_LOOKBACK_MONTHS), self.now)
        bundle = {
            "total_amount": total_amount(window),
            "pattern": pattern.to_dict(),
            "monthly_history": [asdict(m) for m in pattern.monthly_totals],
            "category_history": self._category_history(window),
            "predictions": [p.model_dump() for p in predictions],
        }

        narrative = None
        if self.insight_generator is not None:
            narrative = call_with_timeout(
                self.insight_generator.generate_prediction_narrative,
                to_jsonable(bundle),
                self.insight_timeout,
            )

        for prediction in predictions:
            self.save_prediction(prediction)

        if narrative:
            return AIForecast(predictions=predictions, narrative=narrative, narrative_source=NARRATIVE_AI)
        return AIForecast(
            predictions=predictions,
            narrative=self._fallback_narrative(pattern, predictions),
            narrative_source=NARRATIVE_FALLBACK,
        )

    @staticmethod
    def _category_history(records: List[ExpenseRecord]) -> Dict[str, Dict[str, Decimal]]:
        history: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: Decimal("0")))
        for record in records:
            history[bucket_key(record.timestamp, "month")][record.category_label] += record.amount
        return {month: dict(categories) for month, categories in sorted(history.items())}

    @staticmethod
    def _fallback_narrative(pattern: SpendingPattern, predictions: List[Prediction]) -> str:
        lines = [
            f"Average monthly spending over the last {AI_LOOKBACK_MONTHS} months is "
            f"{pattern.average_monthly:,.0f} and the trend is {pattern.trend}."
        ]
        for p in predictions:
            seasonal = " (high season)" if p.predicted_month in AI_MONTH_MULTIPLIERS else ""
            lines.append(f"- {p.predicted_year}-{p.predicted_month:02d}: about {p.predicted_amount:,.0f}{seasonal}")
        if pattern.anomaly_months:
            lines.append(f"{len(pattern.anomaly_months)} month(s) in the history had unusually high spending.")
        return "\n".join(lines)

    def save_prediction(self, prediction: Prediction) -> Prediction:
        """Append one prediction to the history. Existing rows are never touched."""
        stored = self.store.insert_prediction(prediction)
        if stored is False:
            logger.error(
                f"Failed to store {prediction.algorithm.value} prediction for family {self.family_id} "
                f"({prediction.predicted_year}-{prediction.predicted_month:02d})"
            )
        return prediction

    def get_saved_predictions(self, month: Optional[int] = None, year: Optional[int] = None) -> List[Prediction]:
        if month is not None:
            _check_months(month, "month")
        predictions = self.store.list_predictions(self.family_id, month, year)
        return sorted(predictions, key=lambda p: (p.predicted_year, p.predicted_month, p.created_at))

    def detect_anomalies(self, current_month_amount) -> AnomalyCheck:
        try:
            current = float(current_month_amount)
        except (TypeError, ValueError):
            raise InvalidInputError("current_month_amount must be a number")
        if current < 0:
            raise InvalidInputError("current_month_amount cannot be negative")

        pattern = self.analyze_spending_pattern(LINEAR_LOOKBACK_MONTHS)
        average = pattern.average_monthly

        if current <= average * ANOMALY_THRESHOLD:
            return AnomalyCheck(
                is_anomaly=False,
                severity=SEVERITY_LOW,
                message="Spending is within the normal range",
                current_amount=current,
                average_monthly=average,
                percentage_above_average=(current / average - 1) * 100 if average > 0 else None,
            )

        # No history means any positive figure is unprecedented
        severity = SEVERITY_HIGH if average <= 0 or current > average * HIGH_ANOMALY_THRESHOLD else SEVERITY_MEDIUM
        suggestions = list(ANOMALY_SUGGESTIONS)
        if severity == SEVERITY_HIGH:
            suggestions.insert(0, HIGH_SEVERITY_WARNING)

        if average > 0:
            above = (current / average - 1) * 100
            message = f"Spending this month is {above:.1f}% above the monthly average"
        else:
            above = None
            message = "Spending recorded with no previous months to compare against"

        return AnomalyCheck(
            is_anomaly=True,
            severity=severity,
            message=message,
            current_amount=current,
            average_monthly=average,
            percentage_above_average=above,
            suggestions=suggestions,
        )
