"""
Catalyst Predictor

Rule-based prediction of a catalyst's price reaction.

Per request:
1. Cache check: newest PredictionCacheEntry younger than the TTL is returned as-is
2. Feature extraction from the catalyst and its company profile
3. Weighted rule scoring (type weight, market cap, volatility, horizon,
   sentiment, option flow)
4. Clamp impact to [0, 1] and confidence to [0.3, 0.95]
5. Price-movement range from impact and volatility
6. Similar historical events
7. Append a new cache entry (never overwrite)

Concurrent requests for the same catalyst may both compute and both
append; the newest entry wins on the next read.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pipeline.config import PipelineConfig, get_config
from pipeline.errors import CatalystNotFoundError, PredictionError
from pipeline.features import FeatureExtractor
from pipeline.models import Catalyst, FeatureVector, PredictionCacheEntry, PredictionResult
from pipeline.scorer import apply_market_cap
from pipeline.similarity import SimilarityRetriever
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


HIGH_VOLATILITY_RISK = "High historical volatility"
FAR_OUT_RISK = "Event >30 days out - lower prediction accuracy"
SENTIMENT_RISK = "Positive sentiment momentum"


class Predictor:
    """Cached, feature-based catalyst predictions."""

    def __init__(
        self,
        store,
        config: Optional[PipelineConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        retriever: Optional[SimilarityRetriever] = None,
        now_fn: Callable[[], datetime] = utc_now
    ):
        """
        Initialize predictor.

        Args:
            store: CatalystStore
            config: Pipeline configuration
            extractor: Feature extractor
            retriever: Similar-event retriever
            now_fn: Clock, injectable for tests
        """
        self.store = store
        self.config = config or get_config()
        self.settings = self.config.section("predictor")
        self.market_cap_settings = self.config.section("market_cap")
        self.now_fn = now_fn
        self.extractor = extractor or FeatureExtractor(store, now_fn=now_fn)
        self.retriever = retriever or SimilarityRetriever(store, self.config)

    @property
    def cache_ttl(self) -> int:
        return self.settings["cache_ttl_seconds"]

    def predict_for_catalyst(self, catalyst_id: int) -> PredictionResult:
        """
        Predict for a stored catalyst, serving from cache when fresh.

        Args:
            catalyst_id: Catalyst id

        Returns:
            PredictionResult (cached=True when served from cache)

        Raises:
            CatalystNotFoundError: Unknown id
            PredictionError: Feature extraction or scoring failed
        """
        catalyst = self.store.get(catalyst_id)
        if catalyst is None:
            raise CatalystNotFoundError(catalyst_id)

        latest = self.store.latest_prediction(catalyst_id)
        if latest is not None and latest.is_fresh(self.cache_ttl, self.now_fn()):
            logger.debug(f"Prediction cache hit for catalyst {catalyst_id}")
            return latest.to_result()

        try:
            features = self.extractor.extract(catalyst)
        except (ValueError, TypeError, KeyError) as e:
            raise PredictionError(f"Feature extraction failed for catalyst {catalyst_id}: {e}") from e

        result = self.compute(features, reference=catalyst)
        result.catalyst_id = catalyst_id

        entry = PredictionCacheEntry.from_result(catalyst_id, result)
        entry.created_at = self.now_fn()
        self.store.append_prediction(entry)

        logger.info(
            f"Predicted catalyst {catalyst_id} ({catalyst.ticker}): "
            f"impact={result.impact_prediction}, confidence={result.confidence_score}"
        )
        return result

    def predict_for_features(self, features: FeatureVector) -> PredictionResult:
        """Predict from caller-supplied features. Not cached."""
        return self.compute(features)

    def compute(self, features: FeatureVector, reference: Optional[Catalyst] = None) -> PredictionResult:
        """
        Apply the scoring rules to a feature vector.

        Args:
            features: Predictor inputs
            reference: Stored catalyst, used for vector similarity

        Returns:
            Uncached PredictionResult
        """
        s = self.settings
        risk_factors: List[str] = []

        impact = s["type_weights"].get(features.catalyst_type, s["default_weight"])
        confidence = s["base_confidence"]

        impact, confidence = apply_market_cap(
            impact, confidence, features.market_cap, self.market_cap_settings,
            risk_factors, mega_cap_confidence_bonus=0.1,
        )

        volatility = features.historical_volatility_30d
        if volatility and volatility > 0.4:
            impact *= 1.1
            risk_factors.append(HIGH_VOLATILITY_RISK)

        if features.days_until_event <= 3:
            confidence += 0.15
        elif features.days_until_event > 30:
            confidence -= 0.2
            risk_factors.append(FAR_OUT_RISK)

        if features.sentiment_delta_24h and features.sentiment_delta_24h > 0.2:
            impact *= 1.05
            risk_factors.append(SENTIMENT_RISK)

        if features.option_flow_sentiment and features.option_flow_sentiment > 0.7:
            impact *= 1.1
            confidence += 0.05

        impact = min(max(impact, 0.0), 1.0)
        confidence = min(max(confidence, s["min_confidence"]), s["max_confidence"])

        base_movement = impact * 10
        vol = volatility or s["default_volatility"]
        lower = -(base_movement * vol * 1.5)
        upper = base_movement * (1 + vol)

        similar = self.retriever.find_similar(
            features.catalyst_type, features.ticker, features.sector, reference=reference
        )
        logger.debug(f"Similar events for {features.ticker} via {similar.method}")

        return PredictionResult(
            impact_prediction=round(impact, 4),
            confidence_score=round(confidence, 4),
            lower_bound=round(lower, 4),
            upper_bound=round(upper, 4),
            risk_factors=risk_factors,
            similar_historical_events=similar.events,
        )
