from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CATEGORY = "Other"


class ExpenseRecord(BaseModel):
    """Read-only expense fact as handed to the analytics engine."""

    model_config = ConfigDict(frozen=True)

    id: str
    amount: Decimal = Field(ge=0)
    category: Optional[str] = None
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None  # member the spend is attributed to
    user_id: Optional[str] = None  # member who recorded it
    family_id: Optional[str] = None
    description: Optional[str] = ""

    @property
    def category_label(self) -> str:
        return self.category or DEFAULT_CATEGORY


class ExpensePublic(BaseModel):
    id: str
    amount: Decimal
    category: str
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None
    description: Optional[str] = ""

    @classmethod
    def from_record(cls, record: ExpenseRecord) -> "ExpensePublic":
        return cls(
            id=record.id,
            amount=record.amount,
            category=record.category_label,
            timestamp=record.timestamp,
            owner_id=record.owner_id,
            description=record.description,
        )
