from datetime import datetime
from decimal import Decimal

import pytest

from conftest import FAMILY_ID, FailingInsights, FakeStore, SlowInsights, StaticInsights, expense
from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.prediction import Prediction, PredictionAlgorithm
from household_analytics.utils.bucketing import add_months
from household_analytics.utils.forecast import ExpensePredictor


def rising_history(last_month):
    """Six months averaging 10,000,000 with an increasing trend."""
    amounts = [8000000, 8000000, 8000000, 12000000, 12000000, 12000000]
    return [
        expense(f"r{i}", amount, "Food", add_months(last_month, i - 5))
        for i, amount in enumerate(amounts)
    ]


def flat_history(last_month, amount=10000000, months=12):
    return [expense(f"f{i}", amount, "Food", add_months(last_month, -i)) for i in range(months)]


def test_linear_forecast_applies_seasonal_factor_for_january():
    store = FakeStore(rising_history(datetime(2024, 12, 5)))
    prediction = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 12, 20)).predict_next_month_linear()

    assert (prediction.predicted_month, prediction.predicted_year) == (1, 2025)
    assert prediction.predicted_amount > Decimal("10500000")
    assert prediction.confidence == 0.7
    assert prediction.algorithm == PredictionAlgorithm.LINEAR


def test_linear_forecast_outside_high_season_is_trend_only():
    store = FakeStore(rising_history(datetime(2024, 1, 5)))
    prediction = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 2, 1)).predict_next_month_linear()

    assert prediction.predicted_month == 3
    assert float(prediction.predicted_amount) == pytest.approx(10500000)


def test_linear_forecast_is_persisted():
    store = FakeStore(rising_history(datetime(2024, 1, 5)))
    prediction = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 2, 1)).predict_next_month_linear()
    assert store.predictions == [prediction]


def test_linear_forecast_without_history_is_zero():
    prediction = ExpensePredictor(FAMILY_ID, FakeStore(), now=datetime(2024, 12, 20)).predict_next_month_linear()
    assert prediction.predicted_amount == Decimal("0.00")


def test_ai_forecast_applies_month_multipliers():
    store = FakeStore(flat_history(datetime(2024, 10, 5)))
    forecast = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 10, 20)).predict_with_ai(months=4)

    amounts = {p.predicted_month: float(p.predicted_amount) for p in forecast.predictions}
    assert amounts[11] == pytest.approx(11500000)
    assert amounts[12] == pytest.approx(11500000)
    assert amounts[1] == pytest.approx(13000000)
    assert amounts[2] == pytest.approx(13000000)
    assert all(p.algorithm == PredictionAlgorithm.AI and p.confidence == 0.8 for p in forecast.predictions)
    assert [(p.predicted_year, p.predicted_month) for p in forecast.predictions] == [
        (2024, 11), (2024, 12), (2025, 1), (2025, 2)
    ]


def test_ai_forecast_compounds_trend_per_month_ahead():
    store = FakeStore(rising_history(datetime(2024, 3, 5)))
    forecast = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 3, 20)).predict_with_ai(months=2)

    april, may = (float(p.predicted_amount) for p in forecast.predictions)
    assert april == pytest.approx(10000000 * 1.05)
    assert may == pytest.approx(10000000 * 1.10)


def test_ai_forecast_uses_narrative_when_available():
    insights = StaticInsights("Expect higher spending around Tet.")
    store = FakeStore(flat_history(datetime(2024, 10, 5)))
    forecast = ExpensePredictor(FAMILY_ID, store, insights, now=datetime(2024, 10, 20)).predict_with_ai()

    assert forecast.narrative == "Expect higher spending around Tet."
    assert forecast.narrative_source == "ai"
    bundle = insights.bundles[0]
    assert {"pattern", "monthly_history", "category_history"} <= set(bundle)
    assert bundle["category_history"]["2024-10"]["Food"] == 10000000.0


@pytest.mark.parametrize("generator", [None, FailingInsights()])
def test_ai_forecast_numbers_do_not_depend_on_narrative(generator):
    records = flat_history(datetime(2024, 10, 5))
    with_ai = ExpensePredictor(FAMILY_ID, FakeStore(records), StaticInsights(), now=datetime(2024, 10, 20)).predict_with_ai()
    without = ExpensePredictor(FAMILY_ID, FakeStore(records), generator, now=datetime(2024, 10, 20)).predict_with_ai()

    assert [p.predicted_amount for p in without.predictions] == [p.predicted_amount for p in with_ai.predictions]
    assert without.narrative_source == "fallback"
    assert "trend is stable" in without.narrative


def test_ai_forecast_falls_back_on_timeout():
    store = FakeStore(flat_history(datetime(2024, 10, 5)))
    predictor = ExpensePredictor(FAMILY_ID, store, SlowInsights(delay=1.0), now=datetime(2024, 10, 20), insight_timeout=0.05)
    forecast = predictor.predict_with_ai(months=1)

    assert forecast.narrative_source == "fallback"
    assert len(forecast.predictions) == 1
    assert len(store.predictions) == 1


@pytest.mark.parametrize("months", [0, 13, -1])
def test_month_count_is_validated(months):
    with pytest.raises(InvalidInputError):
        ExpensePredictor(FAMILY_ID, FakeStore(), now=datetime(2024, 10, 20)).predict_with_ai(months)


def test_saved_predictions_are_append_only_and_ordered():
    store = FakeStore(flat_history(datetime(2024, 10, 5)))
    predictor = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 10, 20))
    predictor.predict_with_ai(months=2)
    predictor.predict_with_ai(months=2)

    history = predictor.get_saved_predictions()
    assert len(history) == 4
    assert [(p.predicted_year, p.predicted_month) for p in history] == [(2024, 11), (2024, 11), (2024, 12), (2024, 12)]
    assert len(predictor.get_saved_predictions(month=12, year=2024)) == 2


def test_save_prediction_appends():
    store = FakeStore()
    predictor = ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 10, 20))
    prediction = Prediction(
        family_id=FAMILY_ID,
        predicted_amount=Decimal("1000000"),
        predicted_month=11,
        predicted_year=2024,
        confidence=0.5,
        algorithm=PredictionAlgorithm.LINEAR,
    )
    predictor.save_prediction(prediction)
    predictor.save_prediction(prediction)
    assert len(store.predictions) == 2


class TestDetectAnomalies:
    def predictor(self):
        store = FakeStore(flat_history(datetime(2024, 10, 5), amount=10000000, months=6))
        return ExpensePredictor(FAMILY_ID, store, now=datetime(2024, 10, 20))

    def test_within_normal_range(self):
        result = self.predictor().detect_anomalies(12000000)
        assert not result.is_anomaly
        assert result.severity == "low"
        assert result.suggestions == []

    def test_medium_severity(self):
        result = self.predictor().detect_anomalies(14000000)
        assert result.is_anomaly
        assert result.severity == "medium"
        assert not result.suggestions[0].startswith("WARNING")
        assert result.percentage_above_average == pytest.approx(40.0)

    def test_high_severity_prepends_warning(self):
        result = self.predictor().detect_anomalies(16000000)
        assert result.severity == "high"
        assert result.suggestions[0].startswith("WARNING")
        assert len(result.suggestions) == 4

    def test_boundary_at_one_and_a_half_is_medium(self):
        assert self.predictor().detect_anomalies(15000000).severity == "medium"

    def test_negative_amount_is_rejected(self):
        with pytest.raises(InvalidInputError):
            self.predictor().detect_anomalies(-1)

    def test_no_history_makes_any_spend_high(self):
        predictor = ExpensePredictor(FAMILY_ID, FakeStore(), now=datetime(2024, 10, 20))
        assert predictor.detect_anomalies(1).severity == "high"
        assert not predictor.detect_anomalies(0).is_anomaly
