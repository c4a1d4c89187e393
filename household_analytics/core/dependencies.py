"""
FastAPI dependencies shared by the routers.

Tests swap these out through ``app.dependency_overrides``.
"""
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status

from household_analytics.core.exceptions import AnalyticsError, InvalidInputError, NotFoundError
from household_analytics.db import dynamo
from household_analytics.utils.insights import GeminiInsightGenerator


def get_store() -> Any:
    return dynamo


def get_insight_generator() -> GeminiInsightGenerator:
    return GeminiInsightGenerator()


def get_now() -> datetime:
    return datetime.utcnow()


def to_http_error(error: AnalyticsError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
