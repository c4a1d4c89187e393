"""
Insight / narration collaborator.

Narrative text is the only output of the engine that depends on a network
call. Every call goes through ``call_with_timeout`` which turns failures and
expiry into ``None`` so callers can fall back to locally computed text.
"""
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests
from pydantic import BaseModel

from household_analytics.core.config import settings

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="insights")

INSIGHTS_PROMPT = (
    "You are a household finance advisor. Analyse the family's spending data and reply "
    "with a short overview, the most important observations with concrete figures, and "
    "a bullet list of practical recommendations."
)
PREDICTION_PROMPT = (
    "You are a household finance forecaster. Using the spending pattern and monthly "
    "history, explain the expected spending for the coming months, the seasonal effects "
    "involved, and what the family should prepare for. Use bullet points."
)


class InsightUnavailableError(Exception):
    """The collaborator could not produce text for this request."""


def to_jsonable(obj: Any) -> Any:
    """Convert engine results into plain JSON types for a data bundle."""
    if isinstance(obj, BaseModel):
        return to_jsonable(obj.model_dump())
    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return obj


class GeminiInsightGenerator:
    """
    Calls the Gemini ``generateContent`` REST endpoint.

    Raises ``InsightUnavailableError`` for missing configuration, transport
    errors, non-2xx responses and empty answers.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self._model = model or settings.GEMINI_MODEL
        self._base_url = (base_url or settings.GEMINI_API_URL).rstrip("/")
        self._request_timeout = request_timeout or settings.INSIGHT_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def generate_insights(self, bundle: Dict[str, Any]) -> str:
        return self._generate(INSIGHTS_PROMPT, "Spending data", bundle)

    def generate_prediction_narrative(self, bundle: Dict[str, Any]) -> str:
        return self._generate(PREDICTION_PROMPT, "Historical spending data", bundle)

    def _generate(self, system_prompt: str, heading: str, bundle: Dict[str, Any]) -> str:
        if not self.configured:
            raise InsightUnavailableError("GEMINI_API_KEY is not set")

        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [
                {"parts": [{"text": f"{heading}:\n{json.dumps(to_jsonable(bundle), indent=2, ensure_ascii=False)}"}]}
            ],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": 2000},
        }
        try:
            response = requests.post(
                f"{self._base_url}/{self._model}:generateContent",
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self._request_timeout,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise InsightUnavailableError(str(e)) from e

        try:
            text = result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = ""
        if not text or not text.strip():
            raise InsightUnavailableError("Empty response from model")
        return text.strip()


def call_with_timeout(
    fn: Callable[[Dict[str, Any]], str],
    bundle: Dict[str, Any],
    timeout: Optional[float] = None,
) -> Optional[str]:
    """
    Run one collaborator call under a deadline. Returns ``None`` on any failure.

    There is no retry; an expired call is abandoned and left to finish on its
    worker thread.
    """
    timeout = settings.INSIGHT_TIMEOUT_SECONDS if timeout is None else timeout
    name = getattr(fn, "__name__", "insight call")
    future = _executor.submit(fn, bundle)
    try:
        text = future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        logger.warning(f"{name} timed out after {timeout}s, using local fallback")
        return None
    except Exception as e:
        logger.error(f"{name} failed: {str(e)}")
        return None

    if not text or not str(text).strip():
        logger.warning(f"{name} returned no text, using local fallback")
        return None
    return str(text).strip()