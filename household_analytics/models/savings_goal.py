from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class SavingsGoal(BaseModel):
    """
    Savings goal as stored by the hosting application.

    The analytics engine only reads goals. ``current_amount`` and ``status`` are
    written by the hosting application, never by the engine.
    """

    id: str
    family_id: str
    title: str = ""
    target_amount: Decimal = Field(ge=0)
    current_amount: Decimal = Decimal("0")
    target_date: Optional[datetime] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None
    status: GoalStatus = GoalStatus.ACTIVE
