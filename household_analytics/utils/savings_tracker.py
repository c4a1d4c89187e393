"""
Savings goal progress, ranking, spending adjustments and achievement forecast.

The engine only reads goals. It reports ``goal_reached`` once a goal hits its
target but never changes ``status``; that is left to the hosting application.
"""
from __future__ import annotations

import logging
import math
import re
import statistics
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from household_analytics.core.config import settings
from household_analytics.core.exceptions import InvalidInputError, NotFoundError
from household_analytics.models.savings_goal import GoalStatus, SavingsGoal
from household_analytics.utils.bucketing import add_months, as_utc_naive, category_breakdown, filter_range
from household_analytics.utils.insights import call_with_timeout, to_jsonable
from household_analytics.utils.patterns import TREND_INCREASING, analyze_spending_pattern

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
SECONDS_PER_DAY = 86400
PATTERN_LOOKBACK_MONTHS = 6
SUGGESTION_LOOKBACK_MONTHS = 12
TOP_CATEGORIES = 3
MAX_SUGGESTIONS = 5
MAX_EXTRACTED_RECOMMENDATIONS = 5

# name, description, pace multiplier, multiplier on the required monthly saving
SCENARIOS = (
    ("accelerate", "Increase saving pace by 20%", 1.2, 0.8),
    ("current", "Keep the current saving pace", 1.0, 1.0),
    ("decelerate", "Reduce saving pace by 20%", 0.8, 1.2),
)

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


@dataclass
class GoalProgress:
    current_amount: Decimal
    target_amount: Decimal
    percentage: float
    remaining: Decimal
    days_remaining: Optional[int]
    monthly_required: float
    on_track: bool
    estimated_completion_date: Optional[datetime] = None
    goal_reached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GoalAnalysis:
    insights: str
    recommendations: List[str]
    risk_factors: List[str]
    source: str


@dataclass
class GoalProgressReport:
    goal: SavingsGoal
    progress: GoalProgress
    analysis: GoalAnalysis

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal": self.goal.model_dump(mode="json"),
            "progress": self.progress.to_dict(),
            "ai_analysis": asdict(self.analysis),
        }


@dataclass
class GoalComparison:
    goal_id: str
    percentage: float
    rank: int
    percentile: int
    vs_average: float
    vs_best_performer: float
    compared_goals: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CategoryReduction:
    category: str
    current: float
    suggested: float
    savings: float
    reduction_rate: float


@dataclass
class AdjustmentPlan:
    goal_id: str
    current_spending: float
    target_spending: float
    monthly_required: float
    reductions: List[CategoryReduction] = field(default_factory=list)
    total_savings: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Scenario:
    name: str
    description: str
    pace_multiplier: float
    estimated_date: Optional[datetime]
    monthly_contribution: float  # what the scenario's pace puts aside per month
    monthly_required: float  # required monthly saving under the scenario


@dataclass
class AchievementForecast:
    goal_id: str
    will_achieve: bool
    confidence: float
    estimated_date: Optional[datetime]
    target_date: Optional[datetime]
    scenarios: List[Scenario] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _days_between(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


def daily_saving_rate(goal: SavingsGoal, now: datetime) -> Optional[float]:
    """
    Historical contribution per day since the goal was created, or ``None``
    when there is nothing to extrapolate from.
    """
    if goal.current_amount <= 0 or goal.created_at is None:
        return None
    elapsed = _days_between(now, as_utc_naive(goal.created_at))
    if elapsed <= 0:
        return None
    return float(goal.current_amount) / elapsed


def _projected_date(remaining: Decimal, rate: Optional[float], now: datetime) -> Optional[datetime]:
    if rate is None or rate <= 0:
        return None
    if remaining <= 0:
        return now
    return now + timedelta(days=float(remaining) / rate)


def compute_progress(
    goal: SavingsGoal,
    now: Optional[datetime] = None,
    on_track_tolerance: Optional[float] = None,
) -> GoalProgress:
    now = as_utc_naive(now) if now else datetime.utcnow()
    tolerance = settings.ON_TRACK_TOLERANCE if on_track_tolerance is None else on_track_tolerance

    current = goal.current_amount
    target = goal.target_amount
    percentage = float(current / target * 100) if target > 0 else 0.0
    remaining = target - current

    target_date = as_utc_naive(goal.target_date) if goal.target_date else None
    created_at = as_utc_naive(goal.created_at) if goal.created_at else None

    days_remaining = None
    monthly_required = 0.0
    if target_date is not None:
        days_remaining = _days_between(target_date, now)
        # A passed target date cannot demand more
        if days_remaining > 0:
            monthly_required = float(remaining) / (days_remaining / DAYS_PER_MONTH)

    on_track = True
    if target_date is not None and created_at is not None:
        total_days = _days_between(target_date, created_at)
        if total_days > 0:
            expected = _days_between(now, created_at) / total_days * 100
            on_track = percentage >= expected * tolerance
        else:
            on_track = percentage >= 100

    return GoalProgress(
        current_amount=current,
        target_amount=target,
        percentage=round(percentage, 2),
        remaining=remaining,
        days_remaining=days_remaining,
        monthly_required=round(monthly_required, 2),
        on_track=on_track,
        estimated_completion_date=_projected_date(remaining, daily_saving_rate(goal, now), now),
        goal_reached=percentage >= 100,
    )


def extract_recommendations(text: str) -> List[str]:
    """Pick bullet or numbered lines of reasonable length out of narrative text."""
    recommendations = []
    for line in text.splitlines():
        if not _BULLET.match(line):
            continue
        cleaned = _BULLET.sub("", line).strip().strip("*").strip()
        if 20 < len(cleaned) < 200:
            recommendations.append(cleaned)
    return recommendations[:MAX_EXTRACTED_RECOMMENDATIONS]


class SavingsGoalService:
    def __init__(
        self,
        family_id: str,
        store: Any,
        insight_generator: Any = None,
        now: Optional[datetime] = None,
        on_track_tolerance: Optional[float] = None,
        essential_reduction_rate: Optional[float] = None,
        discretionary_reduction_rate: Optional[float] = None,
        essential_categories: Optional[Iterable[str]] = None,
        insight_timeout: Optional[float] = None,
    ) -> None:
        if not family_id:
            raise InvalidInputError("family_id is required")
        self.family_id = family_id
        self.store = store
        self.insight_generator = insight_generator
        self.now = as_utc_naive(now) if now else datetime.utcnow()
        self.on_track_tolerance = (
            settings.ON_TRACK_TOLERANCE if on_track_tolerance is None else on_track_tolerance
        )
        self.essential_reduction_rate = (
            settings.ESSENTIAL_REDUCTION_RATE if essential_reduction_rate is None else essential_reduction_rate
        )
        self.discretionary_reduction_rate = (
            settings.DISCRETIONARY_REDUCTION_RATE
            if discretionary_reduction_rate is None
            else discretionary_reduction_rate
        )
        categories = settings.ESSENTIAL_CATEGORIES if essential_categories is None else essential_categories
        self.essential_categories = {c.strip().lower() for c in categories}
        self.insight_timeout = insight_timeout

    def _get_goal(self, goal_id: str) -> SavingsGoal:
        goal = self.store.get_goal(goal_id)
        if goal is None or goal.family_id != self.family_id:
            raise NotFoundError(f"Savings goal {goal_id} not found")
        return goal

    def _records(self):
        return self.store.list_expenses(self.family_id, settings.EXPENSE_FETCH_LIMIT)

    def _progress(self, goal: SavingsGoal) -> GoalProgress:
        return compute_progress(goal, self.now, self.on_track_tolerance)

    def is_essential(self, category: str) -> bool:
        return category.strip().lower() in self.essential_categories

    def calculate_progress(self, goal_id: str) -> GoalProgressReport:
        goal = self._get_goal(goal_id)
        progress = self._progress(goal)
        return GoalProgressReport(goal=goal, progress=progress, analysis=self._analyze(goal, progress))

    def _analyze(self, goal: SavingsGoal, progress: GoalProgress) -> GoalAnalysis:
        records = self._records()
        pattern = analyze_spending_pattern(records, lookback_months=PATTERN_LOOKBACK_MONTHS, now=self.now)
        average = pattern.average_monthly
        savings_rate = progress.monthly_required / average if average > 0 else None
        risks = self._risk_factors(progress, average, pattern.trend)

        bundle = {
            "goal": {
                "title": goal.title,
                "category": goal.category,
                "target_amount": progress.target_amount,
                "current_amount": progress.current_amount,
                "remaining": progress.remaining,
                "target_date": goal.target_date,
            },
            "progress": {
                "percentage": progress.percentage,
                "days_remaining": progress.days_remaining,
                "monthly_required": progress.monthly_required,
                "on_track": progress.on_track,
            },
            "spending": {
                "average_monthly": average,
                "savings_rate": savings_rate,
                "trend": pattern.trend,
            },
            "top_categories": [c.to_dict() for c in category_breakdown(records)[:TOP_CATEGORIES]],
        }

        narrative = None
        if self.insight_generator is not None:
            narrative = call_with_timeout(
                self.insight_generator.generate_insights, to_jsonable(bundle), self.insight_timeout
            )

        if narrative:
            recommendations = extract_recommendations(narrative) or self._template_recommendations(
                progress, average
            )
            return GoalAnalysis(insights=narrative, recommendations=recommendations, risk_factors=risks, source="ai")

        return GoalAnalysis(
            insights=self._template_insights(goal, progress),
            recommendations=self._template_recommendations(progress, average),
            risk_factors=risks,
            source="fallback",
        )

    @staticmethod
    def _template_insights(goal: SavingsGoal, progress: GoalProgress) -> str:
        title = goal.title or "This goal"
        text = f"{title} is {progress.percentage:.1f}% complete with {progress.remaining:,.0f} remaining."
        if progress.goal_reached:
            return text + " The target amount has been reached."
        if progress.days_remaining is not None and progress.days_remaining > 0:
            text += f" {progress.days_remaining} days are left until the target date."
        return text

    @staticmethod
    def _template_recommendations(progress: GoalProgress, average_monthly: float) -> List[str]:
        recommendations = []
        if progress.monthly_required > 0:
            if average_monthly > 0 and progress.monthly_required > average_monthly * 0.3:
                share = progress.monthly_required / average_monthly * 100
                recommendations.append(
                    f"The goal needs {progress.monthly_required:,.0f} per month, about {share:.0f}% of "
                    f"average monthly spending. Consider cutting non-essential expenses."
                )
            else:
                recommendations.append(
                    f"Saving {progress.monthly_required:,.0f} per month is enough to reach the goal."
                )
        if progress.on_track:
            recommendations.append("You are on track. Keep up the current saving pace.")
        else:
            recommendations.append("You are behind schedule. Save more each month or adjust the target.")
        recommendations.append("Review spending every month and adjust to stay on course.")
        return recommendations

    @staticmethod
    def _risk_factors(progress: GoalProgress, average_monthly: float, trend: str) -> List[str]:
        risks = []
        if not progress.on_track:
            risks.append("Progress is behind the planned schedule")
        days = progress.days_remaining
        if days is not None and days > 0 and progress.monthly_required > average_monthly * 0.5:
            risks.append("The required monthly saving is high compared to average spending")
        if days is not None and days < 90 and float(progress.remaining) > progress.monthly_required * 2:
            risks.append("Little time is left while a large amount remains")
        if trend == TREND_INCREASING:
            risks.append("Spending is trending upwards, which may reduce the ability to save")
        return risks

    def compare_goals(self, goal_id: str) -> GoalComparison:
        goal = self._get_goal(goal_id)
        others = [
            g for g in self.store.list_goals(self.family_id)
            if g.status == GoalStatus.ACTIVE and g.id != goal.id
        ]
        mine = self._progress(goal).percentage

        if not others:
            return GoalComparison(
                goal_id=goal.id,
                percentage=mine,
                rank=1,
                percentile=100,
                vs_average=0.0,
                vs_best_performer=0.0,
                compared_goals=1,
            )

        percentages = [mine] + [self._progress(g).percentage for g in others]
        count = len(percentages)
        # Ties share the better rank
        rank = 1 + sum(1 for p in percentages if p > mine)
        return GoalComparison(
            goal_id=goal.id,
            percentage=mine,
            rank=rank,
            percentile=round((count - rank + 1) / count * 100),
            vs_average=round(mine - statistics.fmean(percentages), 2),
            vs_best_performer=round(mine - max(percentages), 2),
            compared_goals=count,
        )

    def suggest_adjustments(self, goal_id: str) -> AdjustmentPlan:
        goal = self._get_goal(goal_id)
        progress = self._progress(goal)

        window = filter_range(self._records(), add_months(self.now, -SUGGESTION_LOOKBACK_MONTHS), self.now)
        breakdown = category_breakdown(window)
        current_spending = float(sum((c.amount for c in breakdown), Decimal("0"))) / SUGGESTION_LOOKBACK_MONTHS

        reductions = []
        for item in breakdown:
            if item.amount <= 0:
                continue
            rate = self.essential_reduction_rate if self.is_essential(item.category) else self.discretionary_reduction_rate
            monthly = float(item.amount) / SUGGESTION_LOOKBACK_MONTHS
            reductions.append(
                CategoryReduction(
                    category=item.category,
                    current=round(monthly, 2),
                    suggested=round(monthly * (1 - rate), 2),
                    savings=round(monthly * rate, 2),
                    reduction_rate=rate,
                )
            )
        reductions.sort(key=lambda r: (-r.savings, r.category))

        return AdjustmentPlan(
            goal_id=goal.id,
            current_spending=round(current_spending, 2),
            target_spending=round(current_spending - progress.monthly_required, 2),
            monthly_required=progress.monthly_required,
            reductions=reductions[:MAX_SUGGESTIONS],
            # Counts every category, not just the suggestions shown
            total_savings=round(sum(r.savings for r in reductions), 2),
        )

    def forecast_achievement(self, goal_id: str) -> AchievementForecast:
        goal = self._get_goal(goal_id)
        progress = self._progress(goal)
        target_date = as_utc_naive(goal.target_date) if goal.target_date else None
        estimated = progress.estimated_completion_date

        # Without a deadline there is nothing to be achieved by
        if estimated is None or target_date is None:
            will_achieve, confidence = False, 0.5
        else:
            will_achieve = estimated <= target_date
            confidence = 0.8 if will_achieve else 0.4

        scenarios = []
        rate = daily_saving_rate(goal, self.now)
        if rate is not None:
            for name, description, multiplier, required_multiplier in SCENARIOS:
                pace = rate * multiplier
                scenarios.append(
                    Scenario(
                        name=name,
                        description=description,
                        pace_multiplier=multiplier,
                        estimated_date=_projected_date(progress.remaining, pace, self.now),
                        monthly_contribution=round(pace * DAYS_PER_MONTH, 2),
                        monthly_required=round(progress.monthly_required * required_multiplier, 2),
                    )
                )

        return AchievementForecast(
            goal_id=goal.id,
            will_achieve=will_achieve,
            confidence=confidence,
            estimated_date=estimated,
            target_date=target_date,
            scenarios=scenarios,
        )
