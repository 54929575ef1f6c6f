"""
Tests for Predictor and Feature Extraction
"""

import json
import random
import pytest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.errors import CatalystNotFoundError, PredictionError
from pipeline.features import ConstantProvider, FeatureExtractor, FeatureProviders
from pipeline.models import CatalystMetadata, CompanyProfile, FeatureVector
from pipeline.predictor import FAR_OUT_RISK, HIGH_VOLATILITY_RISK, SENTIMENT_RISK, Predictor
from pipeline.scorer import SMALL_CAP_RISK
from pipeline.similarity import SimilarityRetriever


class Clock:
    """Mutable clock for cache-expiry tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2025, 1, 15, 12, 0, 0))


@pytest.fixture
def predictor(store, config, clock):
    retriever = SimilarityRetriever(store, config, rng=random.Random(1))
    return Predictor(store, config, retriever=retriever, now_fn=clock)


class TestRules:
    """Tests for Predictor.compute() on explicit features."""

    def test_near_term_rate_decision(self, predictor):
        """days_until_event=2 adds 0.15 to the base confidence."""
        features = FeatureVector(catalyst_type="rate-decision", ticker="SPY", days_until_event=2)

        result = predictor.predict_for_features(features)

        assert result.confidence_score == 0.85
        assert result.impact_prediction == 0.95
        assert result.lower_bound == -2.85
        assert result.upper_bound == 11.4
        assert result.risk_factors == []

    def test_far_out_event(self, predictor):
        features = FeatureVector(catalyst_type="earnings", ticker="AAPL", days_until_event=45)

        result = predictor.predict_for_features(features)

        assert result.confidence_score == 0.5
        assert FAR_OUT_RISK in result.risk_factors

    def test_mega_cap(self, predictor):
        features = FeatureVector(catalyst_type="earnings", ticker="AAPL", days_until_event=10, market_cap=3e12)

        result = predictor.predict_for_features(features)

        assert result.impact_prediction == 0.96
        assert result.confidence_score == 0.8

    def test_small_cap(self, predictor):
        features = FeatureVector(catalyst_type="regulatory", ticker="XYZ", days_until_event=10, market_cap=2e9)

        result = predictor.predict_for_features(features)

        assert result.impact_prediction == 0.6
        assert result.confidence_score == 0.6
        assert SMALL_CAP_RISK in result.risk_factors

    def test_signals_and_clamping(self, predictor):
        """Volatility, sentiment and option flow stack; impact is clamped to 1."""
        features = FeatureVector(
            catalyst_type="rate-decision",
            ticker="TSLA",
            days_until_event=1,
            market_cap=800e9,
            historical_volatility_30d=0.5,
            sentiment_delta_24h=0.3,
            option_flow_sentiment=0.9,
        )

        result = predictor.predict_for_features(features)

        assert result.impact_prediction == 1.0
        assert result.confidence_score == 0.95
        assert HIGH_VOLATILITY_RISK in result.risk_factors
        assert SENTIMENT_RISK in result.risk_factors
        assert result.lower_bound == -7.5
        assert result.upper_bound == 15.0

    def test_unknown_type_uses_default_weight(self, predictor):
        features = FeatureVector(catalyst_type="macro", ticker="SPY", days_until_event=10)

        assert predictor.predict_for_features(features).impact_prediction == 0.5

    def test_payload_shape(self, predictor):
        features = FeatureVector(catalyst_type="earnings", ticker="AAPL", days_until_event=10)

        payload = predictor.predict_for_features(features).to_dict()

        assert set(payload) == {
            "impact_prediction", "confidence_score", "price_movement_range",
            "risk_factors", "similar_historical_events",
        }
        assert set(payload["price_movement_range"]) == {"lower_bound", "upper_bound"}
        assert payload["similar_historical_events"][0]["ticker"] == "AAPL"


class TestPredictForCatalyst:
    """Tests for cached predictions of stored catalysts."""

    def test_unknown_catalyst(self, predictor):
        with pytest.raises(CatalystNotFoundError):
            predictor.predict_for_catalyst(12345)

    def test_second_call_is_served_from_cache(self, predictor, store, make_catalyst):
        """Two calls within the TTL return byte-identical payloads."""
        catalyst_id = store.insert_ignore([make_catalyst("AAPL")])[0].id

        first = predictor.predict_for_catalyst(catalyst_id)
        second = predictor.predict_for_catalyst(catalyst_id)

        assert first.cached is False
        assert second.cached is True
        assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())
        assert store.prediction_count(catalyst_id) == 1

    def test_expired_cache_appends_new_entry(self, predictor, store, make_catalyst, clock):
        catalyst_id = store.insert_ignore([make_catalyst("AAPL")])[0].id

        predictor.predict_for_catalyst(catalyst_id)
        clock.now += timedelta(hours=1, seconds=1)
        result = predictor.predict_for_catalyst(catalyst_id)

        assert result.cached is False
        assert store.prediction_count(catalyst_id) == 2

    def test_extraction_failure_becomes_prediction_error(self, store, config, make_catalyst):
        catalyst_id = store.insert_ignore([make_catalyst("AAPL")])[0].id
        extractor = MagicMock()
        extractor.extract.side_effect = ValueError("bad feature")
        predictor = Predictor(store, config, extractor=extractor)

        with pytest.raises(PredictionError):
            predictor.predict_for_catalyst(catalyst_id)
        assert store.prediction_count(catalyst_id) == 0


class TestFeatureExtractor:
    """Tests for FeatureExtractor."""

    def test_profile_overrides_metadata(self, store, make_catalyst, clock):
        store.upsert_profile(CompanyProfile(
            ticker="AAPL", market_cap=3.4e12, sector="Technology", debt_to_equity=1.8,
        ))
        catalyst = make_catalyst(
            "AAPL",
            metadata=CatalystMetadata.from_dict({"market_cap": 1e9, "sector": "Unknown"}, "earnings"),
        )

        features = FeatureExtractor(store, now_fn=clock).extract(catalyst)

        assert features.market_cap == 3.4e12
        assert features.sector == "Technology"
        assert features.debt_to_equity == 1.8
        assert features.sector_momentum == 0.35
        assert features.days_until_event == 15

    def test_default_providers(self, store, make_catalyst, clock):
        features = FeatureExtractor(store, now_fn=clock).extract(make_catalyst("TSLA"))

        assert features.historical_volatility_30d == 0.42
        assert features.sentiment_delta_24h == 0.0
        assert features.option_flow_sentiment == 0.5
        assert features.market_cap is None

    def test_injected_providers(self, store, make_catalyst, clock):
        providers = FeatureProviders(
            volatility=ConstantProvider(0.6),
            sentiment=ConstantProvider(None),
            sector_momentum=ConstantProvider(None),
            macro_rate_environment=ConstantProvider(None),
            option_flow=ConstantProvider(0.8),
        )

        features = FeatureExtractor(store, providers, now_fn=clock).extract(make_catalyst("AAPL"))

        assert features.historical_volatility_30d == 0.6
        assert features.sentiment_delta_24h is None
        assert features.option_flow_sentiment == 0.8
