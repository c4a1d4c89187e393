import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest
import requests

from household_analytics.models.prediction import PredictionAlgorithm
from household_analytics.utils import insights
from household_analytics.utils.insights import (
    GeminiInsightGenerator,
    InsightUnavailableError,
    call_with_timeout,
    to_jsonable,
)


@dataclass
class Sample:
    amount: Decimal
    when: datetime


def test_to_jsonable_converts_engine_types():
    data = to_jsonable({
        "sample": Sample(Decimal("12.50"), datetime(2024, 1, 2, 3, 4)),
        "algorithm": PredictionAlgorithm.AI,
        "items": (Decimal("1"), None),
    })
    assert data == {
        "sample": {"amount": 12.5, "when": "2024-01-02T03:04:00"},
        "algorithm": "ai",
        "items": [1.0, None],
    }


class TestCallWithTimeout:
    def test_returns_stripped_text(self):
        assert call_with_timeout(lambda bundle: "  hello \n", {}) == "hello"

    def test_failure_becomes_none(self):
        def boom(bundle):
            raise InsightUnavailableError("down")

        assert call_with_timeout(boom, {}) is None

    def test_empty_text_becomes_none(self):
        assert call_with_timeout(lambda bundle: "   ", {}) is None

    def test_timeout_becomes_none(self):
        def slow(bundle):
            time.sleep(1.0)
            return "late"

        started = time.monotonic()
        assert call_with_timeout(slow, {}, timeout=0.05) is None
        assert time.monotonic() - started < 0.9

    def test_bundle_is_passed_through(self):
        assert call_with_timeout(lambda bundle: bundle["text"], {"text": "ok"}) == "ok"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class TestGeminiInsightGenerator:
    def test_unconfigured_generator_raises(self):
        generator = GeminiInsightGenerator(api_key="")
        assert not generator.configured
        with pytest.raises(InsightUnavailableError):
            generator.generate_insights({"total_amount": 1})

    def test_request_and_response(self, monkeypatch):
        calls = []

        def fake_post(url, **kwargs):
            calls.append((url, kwargs))
            return FakeResponse({"candidates": [{"content": {"parts": [{"text": " Spend less on snacks. "}]}}]})

        monkeypatch.setattr(insights.requests, "post", fake_post)
        generator = GeminiInsightGenerator(api_key="k", model="test-model", base_url="https://example.test/models/")

        assert generator.generate_insights({"total_amount": Decimal("5")}) == "Spend less on snacks."
        url, kwargs = calls[0]
        assert url == "https://example.test/models/test-model:generateContent"
        assert kwargs["params"] == {"key": "k"}
        assert '"total_amount": 5.0' in kwargs["json"]["contents"][0]["parts"][0]["text"]

    def test_http_error_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(insights.requests, "post", lambda url, **kwargs: FakeResponse({}, status_code=503))
        with pytest.raises(InsightUnavailableError):
            GeminiInsightGenerator(api_key="k").generate_prediction_narrative({})

    def test_empty_candidates_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(insights.requests, "post", lambda url, **kwargs: FakeResponse({"candidates": []}))
        with pytest.raises(InsightUnavailableError):
            GeminiInsightGenerator(api_key="k").generate_insights({})
