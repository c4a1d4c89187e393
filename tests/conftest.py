import time
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from household_analytics.models.expense import ExpenseRecord
from household_analytics.models.member import FamilyMember
from household_analytics.utils.insights import InsightUnavailableError

FAMILY_ID = "fam-1"
NOW = datetime(2024, 3, 15, 12, 0, 0)


def expense(expense_id, amount, category, timestamp, family_id=FAMILY_ID, **kwargs):
    return ExpenseRecord(
        id=expense_id,
        amount=Decimal(str(amount)),
        category=category,
        timestamp=timestamp,
        family_id=family_id,
        **kwargs,
    )


class FakeStore:
    """In-memory stand-in for the DynamoDB adapter."""

    def __init__(self, expenses=None, members=None, goals=None):
        self.expenses = list(expenses or [])
        self.members = list(members or [])
        self.goals = {goal.id: goal for goal in goals or []}
        self.predictions = []
        self.tables_ok = True

    def list_expenses(self, family_id, limit=None):
        rows = [e for e in self.expenses if e.family_id == family_id]
        rows.sort(key=lambda e: e.timestamp or datetime.min, reverse=True)
        return rows[:limit] if limit else rows

    def list_family_members(self, family_id):
        return [m for m in self.members if m.family_id == family_id]

    def get_goal(self, goal_id):
        return self.goals.get(goal_id)

    def list_goals(self, family_id):
        return [g for g in self.goals.values() if g.family_id == family_id]

    def insert_prediction(self, prediction):
        self.predictions.append(prediction)
        return True

    def list_predictions(self, family_id, month=None, year=None):
        return [
            p for p in self.predictions
            if p.family_id == family_id
            and (month is None or p.predicted_month == month)
            and (year is None or p.predicted_year == year)
        ]

    def list_family_ids(self):
        return sorted({e.family_id for e in self.expenses if e.family_id})

    def check_tables(self):
        status = "accessible" if self.tables_ok else "error"
        return {name: {"name": name, "status": status} for name in ("users", "expenses", "savings_goals", "predictions")}


class StaticInsights:
    def __init__(self, text="Spending is stable.\n- Cook at home more often to cut food costs\n- Review the monthly subscriptions list"):
        self.text = text
        self.bundles = []

    def generate_insights(self, bundle):
        self.bundles.append(bundle)
        return self.text

    def generate_prediction_narrative(self, bundle):
        self.bundles.append(bundle)
        return self.text


class FailingInsights:
    def generate_insights(self, bundle):
        raise InsightUnavailableError("service down")

    def generate_prediction_narrative(self, bundle):
        raise InsightUnavailableError("service down")


class SlowInsights:
    def __init__(self, delay=0.5):
        self.delay = delay

    def generate_insights(self, bundle):
        time.sleep(self.delay)
        return "too late"

    def generate_prediction_narrative(self, bundle):
        time.sleep(self.delay)
        return "too late"


@pytest.fixture
def scenario_records():
    return [
        expense("e1", 500000, "Food", datetime(2024, 1, 5)),
        expense("e2", 2000000, "Wedding", datetime(2024, 1, 20)),
        expense("e3", 300000, "Food", datetime(2024, 2, 3)),
    ]


@pytest.fixture
def members():
    return [
        FamilyMember(id="u-father", family_id=FAMILY_ID, full_name="Nguyễn Văn Minh", role="father"),
        FamilyMember(id="u-mother", family_id=FAMILY_ID, full_name="Trần Thị Lan", role="mother"),
    ]


@pytest.fixture
def store(scenario_records, members):
    return FakeStore(expenses=scenario_records, members=members)


@pytest.fixture
def client(store):
    from household_analytics.core.dependencies import get_insight_generator, get_now, get_store
    from household_analytics.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_insight_generator] = lambda: FailingInsights()
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from household_analytics.core.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token({'family_id': FAMILY_ID})}"}
