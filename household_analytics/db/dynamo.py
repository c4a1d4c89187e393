import logging
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from household_analytics.core.config import settings
from household_analytics.models.expense import ExpenseRecord
from household_analytics.models.member import FamilyMember
from household_analytics.models.prediction import Prediction
from household_analytics.models.savings_goal import SavingsGoal
from household_analytics.utils.bucketing import as_utc_naive

logger = logging.getLogger(__name__)

FAMILY_INDEX = "family_id-index"

# Initialize DynamoDB resource
dynamodb = boto3.resource("dynamodb", region_name=settings.DYNAMO_REGION)

# Get table references
users_table = dynamodb.Table(settings.DYNAMO_USERS_TABLE)
expenses_table = dynamodb.Table(settings.DYNAMO_EXPENSES_TABLE)
goals_table = dynamodb.Table(settings.DYNAMO_GOALS_TABLE)
predictions_table = dynamodb.Table(settings.DYNAMO_PREDICTIONS_TABLE)


def _error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", str(e))


def list_expenses(family_id: str, limit: Optional[int] = None) -> List[ExpenseRecord]:
    """
    Newest-first expenses of a family via the family GSI (sort key ``created_at``).
    """
    limit = limit or settings.EXPENSE_FETCH_LIMIT
    items: List[Dict[str, Any]] = []
    kwargs = {
        "IndexName": FAMILY_INDEX,
        "KeyConditionExpression": Key("family_id").eq(family_id),
        "ScanIndexForward": False,
    }
    try:
        while len(items) < limit:
            response = expenses_table.query(Limit=limit - len(items), **kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
    except ClientError as e:
        logger.error(f"list_expenses failed for family {family_id}: {_error_message(e)}")
        return []

    records = []
    for item in items[:limit]:
        record = _to_expense(item)
        if record is not None:
            records.append(record)
    return records


def list_family_members(family_id: str) -> List[FamilyMember]:
    try:
        response = users_table.query(
            IndexName=FAMILY_INDEX,
            KeyConditionExpression=Key("family_id").eq(family_id),
        )
    except ClientError as e:
        logger.error(f"list_family_members failed for family {family_id}: {_error_message(e)}")
        return []

    members = []
    for item in response.get("Items", []):
        try:
            members.append(
                FamilyMember(
                    id=item.get("user_id") or item.get("id"),
                    family_id=item.get("family_id"),
                    full_name=item.get("full_name") or item.get("name") or "",
                    role=item.get("role"),
                )
            )
        except ValidationError as e:
            logger.warning(f"Skipping malformed user item: {str(e)}")
    return members


def get_goal(goal_id: str) -> Optional[SavingsGoal]:
    try:
        response = goals_table.get_item(Key={"goal_id": goal_id})
    except ClientError as e:
        logger.error(f"get_goal failed for {goal_id}: {_error_message(e)}")
        return None
    item = response.get("Item")
    return _to_goal(item) if item else None


def list_goals(family_id: str) -> List[SavingsGoal]:
    try:
        response = goals_table.query(
            IndexName=FAMILY_INDEX,
            KeyConditionExpression=Key("family_id").eq(family_id),
        )
    except ClientError as e:
        logger.error(f"list_goals failed for family {family_id}: {_error_message(e)}")
        return []
    goals = [_to_goal(item) for item in response.get("Items", [])]
    return [goal for goal in goals if goal is not None]


def insert_prediction(prediction: Prediction) -> bool:
    """Append a prediction row. Rows are never updated or removed."""
    item = _convert_for_dynamo(prediction.model_dump())
    item["prediction_id"] = str(uuid.uuid4())
    try:
        predictions_table.put_item(Item=item)
        return True
    except ClientError as e:
        logger.error(f"insert_prediction failed for family {prediction.family_id}: {_error_message(e)}")
        return False


def list_predictions(family_id: str, month: Optional[int] = None, year: Optional[int] = None) -> List[Prediction]:
    kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("family_id").eq(family_id)}
    condition = None
    if month is not None:
        condition = Attr("predicted_month").eq(month)
    if year is not None:
        year_condition = Attr("predicted_year").eq(year)
        condition = year_condition if condition is None else condition & year_condition
    if condition is not None:
        kwargs["FilterExpression"] = condition

    items = []
    try:
        while True:
            response = predictions_table.query(**kwargs)
            items.extend(response.get("Items", []))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
    except ClientError as e:
        logger.error(f"list_predictions failed for family {family_id}: {_error_message(e)}")
        return []

    predictions = []
    for item in items:
        try:
            predictions.append(Prediction(**_from_dynamo(item)))
        except ValidationError as e:
            logger.warning(f"Skipping malformed prediction {item.get('prediction_id')}: {str(e)}")
    return predictions


def list_family_ids() -> List[str]:
    """Every family that has at least one expense."""
    family_ids = set()
    kwargs: Dict[str, Any] = {"ProjectionExpression": "family_id"}
    try:
        while True:
            response = expenses_table.scan(**kwargs)
            family_ids.update(item["family_id"] for item in response.get("Items", []) if item.get("family_id"))
            if "LastEvaluatedKey" not in response:
                break
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
    except ClientError as e:
        logger.error(f"list_family_ids failed: {_error_message(e)}")
        return []
    return sorted(family_ids)


def check_tables() -> Dict[str, Dict[str, Any]]:
    """Reachability of each table, used by the status endpoint."""
    status = {}
    for name, table in (
        ("users", users_table),
        ("expenses", expenses_table),
        ("savings_goals", goals_table),
        ("predictions", predictions_table),
    ):
        try:
            table.scan(Limit=1)
            status[name] = {"name": table.name, "status": "accessible", "region": settings.DYNAMO_REGION}
        except Exception as e:
            # Missing credentials surface as botocore errors outside ClientError
            logger.error(f"Table check failed for {name}: {str(e)}")
            status[name] = {"name": table.name, "status": "error", "error": str(e)}
    return status


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if isinstance(value, (int, float, Decimal)):
        return datetime.utcfromtimestamp(float(value))
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc_naive(datetime.fromisoformat(text))
    except ValueError:
        logger.warning(f"Unparseable timestamp '{value}'")
        return None


def _to_expense(item: Dict[str, Any]) -> Optional[ExpenseRecord]:
    try:
        return ExpenseRecord(
            id=str(item.get("expense_id") or item.get("id")),
            amount=Decimal(str(item.get("amount", "0"))),
            category=item.get("category") or None,
            timestamp=_parse_datetime(item.get("created_at") or item.get("date")),
            owner_id=item.get("owner_id") or item.get("child_id"),
            user_id=item.get("user_id"),
            family_id=item.get("family_id"),
            description=item.get("description") or "",
        )
    except (ValidationError, ArithmeticError) as e:
        logger.warning(f"Skipping malformed expense {item.get('expense_id')}: {str(e)}")
        return None


def _to_goal(item: Dict[str, Any]) -> Optional[SavingsGoal]:
    try:
        return SavingsGoal(
            id=str(item.get("goal_id") or item.get("id")),
            family_id=item.get("family_id"),
            title=item.get("title") or "",
            target_amount=Decimal(str(item.get("target_amount", "0"))),
            current_amount=Decimal(str(item.get("current_amount", "0"))),
            target_date=_parse_datetime(item.get("target_date")),
            category=item.get("category"),
            created_at=_parse_datetime(item.get("created_at")),
            status=item.get("status") or "active",
        )
    except (ValidationError, ArithmeticError) as e:
        logger.warning(f"Skipping malformed savings goal {item.get('goal_id')}: {str(e)}")
        return None


def _convert_for_dynamo(obj: Any):
    """
    Recursively convert floats to Decimal and dates/enums to strings for DynamoDB.
    """
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _convert_for_dynamo(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, list):
        return [_convert_for_dynamo(v) for v in obj]
    return obj


def _from_dynamo(obj: Any):
    """
    Recursively convert whole Decimal values back to int. Fractional values stay
    Decimal so amounts are never read back as binary floats.
    """
    if isinstance(obj, list):
        return [_from_dynamo(item) for item in obj]
    if isinstance(obj, dict):
        return {k: _from_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, Decimal) and obj % 1 == 0:
        return int(obj)
    return obj
