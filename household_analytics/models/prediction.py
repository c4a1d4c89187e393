from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PredictionAlgorithm(str, Enum):
    LINEAR = "linear"
    AI = "ai"


class Prediction(BaseModel):
    """One forecast row; both algorithms share this shape and are told apart by ``algorithm``."""

    family_id: str
    predicted_amount: Decimal
    predicted_month: int = Field(ge=1, le=12)
    predicted_year: int
    category: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    algorithm: PredictionAlgorithm
    reasoning: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
