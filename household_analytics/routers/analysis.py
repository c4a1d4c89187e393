import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from household_analytics.core.dependencies import get_insight_generator, get_now, get_store, to_http_error
from household_analytics.core.exceptions import AnalyticsError
from household_analytics.core.security import get_current_family_id
from household_analytics.utils.analysis_service import ExpenseAnalysisService
from household_analytics.utils.comparator import DateRange
from household_analytics.utils.forecast import ExpensePredictor
from household_analytics.utils.insights import to_jsonable

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/period")
def analyze_period(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    include_predictions: bool = False,
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    insight_generator: Any = Depends(get_insight_generator),
    now: datetime = Depends(get_now),
) -> Dict:
    """Totals, breakdowns, daily anomalies and insights for a date range."""
    try:
        service = ExpenseAnalysisService(family_id, store, insight_generator, now=now)
        analysis = service.analyze_by_period(start_date, end_date, include_predictions)
        return to_jsonable(analysis.to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Period analysis failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to analyze period")


@router.get("/compare")
def compare_periods(
    current_start: datetime = Query(...),
    current_end: datetime = Query(...),
    previous_start: datetime = Query(...),
    previous_end: datetime = Query(...),
    comparison_type: str = Query("month", alias="type"),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        service = ExpenseAnalysisService(family_id, store, now=now)
        report = service.compare_periods(
            comparison_type,
            DateRange(start=current_start, end=current_end),
            DateRange(start=previous_start, end=previous_end),
        )
        return to_jsonable(report.to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Period comparison failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to compare periods")


@router.get("/detailed")
def detailed_data(
    period: str = Query(..., description="day, week, month, quarter or year"),
    value: str = Query(..., description="Bucket key, e.g. 2024-01 or 2024-W05"),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    """Drill-down into a single chart bucket."""
    try:
        service = ExpenseAnalysisService(family_id, store, now=now)
        return to_jsonable(service.get_detailed_data(period, value).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Detailed data failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load detailed data")


@router.get("/predictions")
def predictions(
    months: int = Query(3),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    insight_generator: Any = Depends(get_insight_generator),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        predictor = ExpensePredictor(family_id, store, insight_generator, now=now)
        return to_jsonable(predictor.predict_with_ai(months).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Prediction failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to generate predictions")


@router.get("/predictions/history")
def prediction_history(
    month: Optional[int] = None,
    year: Optional[int] = None,
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        predictor = ExpensePredictor(family_id, store, now=now)
        history = predictor.get_saved_predictions(month, year)
        return {"predictions": [p.model_dump(mode="json") for p in history]}
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Prediction history failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load prediction history")


@router.get("/anomalies")
def anomalies(
    amount: float = Query(..., description="Spending figure for the current month"),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        predictor = ExpensePredictor(family_id, store, now=now)
        return to_jsonable(predictor.detect_anomalies(amount).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Anomaly check failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to check anomalies")


@router.get("/spending-pattern")
def spending_pattern(
    months: int = Query(12),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        predictor = ExpensePredictor(family_id, store, now=now)
        return to_jsonable(predictor.analyze_spending_pattern(months).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Spending pattern failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to analyze spending pattern")
