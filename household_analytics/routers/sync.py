import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from household_analytics.core.config import settings
from household_analytics.core.dependencies import get_now, get_store, to_http_error
from household_analytics.core.exceptions import AnalyticsError
from household_analytics.core.security import get_current_family_id
from household_analytics.models.expense import ExpensePublic
from household_analytics.utils.insights import to_jsonable
from household_analytics.utils.sync import DEFAULT_CHANGE_LIMIT, get_changes, get_sync_status

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/status")
def sync_status(
    last_sync: Optional[datetime] = None,
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    """Whether the client holding ``last_sync`` should pull changes."""
    try:
        records = store.list_expenses(family_id, settings.EXPENSE_FETCH_LIMIT)
        members = store.list_family_members(family_id)
        return to_jsonable(get_sync_status(records, len(members), last_sync, now))
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Sync status failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get sync status")


@router.get("/changes")
def sync_changes(
    since: Optional[datetime] = None,
    limit: int = Query(DEFAULT_CHANGE_LIMIT),
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Dict:
    try:
        records = store.list_expenses(family_id, settings.EXPENSE_FETCH_LIMIT)
        changes = get_changes(records, since, limit, now)
        return to_jsonable({
            "since": changes.since,
            "last_sync": changes.last_sync,
            "expenses": [ExpensePublic.from_record(r).model_dump() for r in changes.expenses],
        })
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Sync changes failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get changes")
