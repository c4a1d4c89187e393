import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from household_analytics.core.dependencies import get_now, get_store, to_http_error
from household_analytics.core.exceptions import AnalyticsError
from household_analytics.core.security import get_current_family_id
from household_analytics.utils.alerts import AlertService
from household_analytics.utils.insights import to_jsonable

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/budget")
def budget_alerts(
    monthly_budget: Optional[float] = Query(None, description="Overrides the configured monthly budget"),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    """Budget usage for the current month and any categories running high."""
    try:
        budget = Decimal(str(monthly_budget)) if monthly_budget is not None else None
        return to_jsonable(AlertService(family_id, store, now=now).budget(budget).to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Budget alerts failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to check the budget")


@router.get("/reminders")
def reminders(
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        return to_jsonable(AlertService(family_id, store, now=now).reminders().to_dict())
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Reminders failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load reminders")
