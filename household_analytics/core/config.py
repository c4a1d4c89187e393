from decimal import Decimal
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App settings
    PROJECT_NAME: str = "HouseholdAnalytics"
    API_PREFIX: str = "/api"
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")

    # DynamoDB
    DYNAMO_REGION: str = Field(default="ap-southeast-1")
    DYNAMO_USERS_TABLE: str = Field(default="household-users", validation_alias="DYNAMO_TABLE_USERS")
    DYNAMO_EXPENSES_TABLE: str = Field(default="household-expenses", validation_alias="DYNAMO_TABLE_EXPENSES")
    DYNAMO_GOALS_TABLE: str = Field(default="household-savings-goals", validation_alias="DYNAMO_TABLE_GOALS")
    DYNAMO_PREDICTIONS_TABLE: str = Field(default="household-predictions", validation_alias="DYNAMO_TABLE_PREDICTIONS")
    EXPENSE_FETCH_LIMIT: int = 10000

    # JWT Authentication (tokens are issued by the hosting application)
    JWT_SECRET_KEY: str = Field(default="household-analytics-dev-secret-change-me", validation_alias="JWT_SECRET")
    JWT_ALGORITHM: str = "HS256"

    # Insight / narration collaborator
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta/models"
    INSIGHT_TIMEOUT_SECONDS: float = 30.0

    # Savings goal policy
    ON_TRACK_TOLERANCE: float = 0.9
    ESSENTIAL_REDUCTION_RATE: float = 0.05
    DISCRETIONARY_REDUCTION_RATE: float = 0.15
    ESSENTIAL_CATEGORIES: List[str] = ["health", "education", "household", "y tế", "học tập", "gia dụng"]

    # Spending alerts
    MONTHLY_BUDGET: Decimal = Decimal("25000000")
    BUDGET_WARNING_THRESHOLD: float = 75.0  # percent of the budget used
    BUDGET_CRITICAL_THRESHOLD: float = 90.0
    BUDGET_CATEGORY_COUNT: int = 9  # the budget is split evenly across this many categories
    CATEGORY_OVERSPEND_MULTIPLIER: float = 2.0
    RECURRING_MIN_OCCURRENCES: int = 2
    MONTH_END_REMINDER_DAY: int = 28

    # Monthly forecast job
    SCHEDULER_ENABLED: bool = Field(default=False)
    FORECAST_CRON_DAY: int = 1
    FORECAST_CRON_HOUR: int = 6
    FORECAST_CRON_MINUTE: int = 0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, populate_by_name=True)


settings = Settings()
