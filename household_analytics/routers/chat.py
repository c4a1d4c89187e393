import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from household_analytics.core.dependencies import get_insight_generator, get_now, get_store, to_http_error
from household_analytics.core.exceptions import AnalyticsError
from household_analytics.core.security import get_current_family_id
from household_analytics.models.chat import ChatQuery
from household_analytics.utils.insights import call_with_timeout, to_jsonable
from household_analytics.utils.query_engine import QueryEngine, QueryResult

router = APIRouter()
logger = logging.getLogger(__name__)


def fallback_answer(result: QueryResult) -> str:
    return "\n".join(f"{section.title}: {section.summary}" for section in result.sections)


@router.post("/query")
def query(
    body: ChatQuery,
    family_id: str = Depends(get_current_family_id),
    store: Any = Depends(get_store),
    insight_generator: Any = Depends(get_insight_generator),
    now: datetime = Depends(get_now),
) -> Dict:
    """
    Route a free-text question to the matching intents and narrate the result.

    The assembled sections are always returned; ``answer`` falls back to their
    summaries when narration is unavailable.
    """
    try:
        result = QueryEngine(family_id, store, now=now).run(body.question)
    except AnalyticsError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Query routing failed for family {family_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to answer question")

    bundle = to_jsonable(asdict(result))
    answer = call_with_timeout(insight_generator.generate_insights, bundle)
    return {
        **bundle,
        "answer": answer or fallback_answer(result),
        "answer_source": "ai" if answer else "fallback",
    }
