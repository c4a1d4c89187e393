import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from household_analytics.core.dependencies import get_insight_generator, get_now, get_store, to_http_error
from household_analytics.core.exceptions import AnalyticsError
from household_analytics.core.security import get_current_family_id
from household_analytics.utils.insights import to_jsonable
from household_analytics.utils.savings_tracker import SavingsGoalService

router = APIRouter()
logger = logging.getLogger(__name__)


def get_goal_service(
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    insight_generator: Any = Depends(get_insight_generator),
    now: datetime = Depends(get_now),
) -> SavingsGoalService:
    return SavingsGoalService(family_id, store, insight_generator, now=now)


@router.get("/{goal_id}/progress")
def goal_progress(goal_id: str, service: SavingsGoalService = Depends(get_goal_service)) -> Dict:
    try:
        return to_jsonable(service.calculate_progress(goal_id).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Goal progress failed for {goal_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to calculate goal progress")


@router.get("/{goal_id}/compare")
def goal_comparison(goal_id: str, service: SavingsGoalService = Depends(get_goal_service)) -> Dict:
    try:
        return to_jsonable(service.compare_goals(goal_id).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Goal comparison failed for {goal_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to compare goals")


@router.get("/{goal_id}/suggestions")
def goal_suggestions(goal_id: str, service: SavingsGoalService = Depends(get_goal_service)) -> Dict:
    try:
        return to_jsonable(service.suggest_adjustments(goal_id).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Goal suggestions failed for {goal_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to suggest adjustments")


@router.get("/{goal_id}/forecast")
def goal_forecast(goal_id: str, service: SavingsGoalService = Depends(get_goal_service)) -> Dict:
    try:
        return to_jsonable(service.forecast_achievement(goal_id).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Goal forecast failed for {goal_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to forecast goal")
