"""
Health Check Router
Liveness plus DynamoDB table and scheduler status
"""
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends

from household_analytics.core.config import settings
from household_analytics.core.dependencies import get_store
from household_analytics.utils.scheduler import get_scheduler_status

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns API status.
    """
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/status")
def services_status(store: Any = Depends(get_store)):
    """
    Check reachability of the DynamoDB tables and report the forecast scheduler.
    """
    tables = store.check_tables()
    connected = all(table["status"] == "accessible" for table in tables.values())
    if not connected:
        logger.warning("One or more DynamoDB tables are not accessible")

    return {
        "timestamp": datetime.utcnow().isoformat(),
        "services": {
            "dynamodb": {"connected": connected, "tables": tables},
            "scheduler": get_scheduler_status(),
        },
        "overall_status": "healthy" if connected else "degraded",
    }
