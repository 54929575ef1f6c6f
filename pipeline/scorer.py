"""
Catalyst Scorer

Deterministic impact/confidence scoring from rule tables:
- Impact base rate per catalyst type (form-type table for filings)
- Market-cap adjustments (mega-cap x1.2, small-cap x0.8 and -0.1 confidence)
- Confidence bump from the number of prior catalysts for (type, ticker)

Also derives `predicted_impact` from recorded outcomes of prior catalysts.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pipeline.config import PipelineConfig, get_config
from pipeline.models import (
    Catalyst,
    CatalystDraft,
    CatalystMetadata,
    FilingMetadata,
    round_score,
)
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


SMALL_CAP_RISK = "Small cap - higher volatility risk"


@dataclass
class ScoreResult:
    """Output of one scoring pass."""
    impact_score: float
    confidence_score: float
    prior_count: int = 0
    risk_factors: List[str] = field(default_factory=list)


def apply_market_cap(
    impact: float,
    confidence: float,
    market_cap: Optional[float],
    settings: Dict[str, Any],
    risk_factors: List[str],
    mega_cap_confidence_bonus: float = 0.0
) -> tuple:
    """
    Apply the shared market-cap rule.

    Args:
        impact: Impact before adjustment
        confidence: Confidence before adjustment
        market_cap: Market cap in USD, or None to skip
        settings: The `market_cap` config section
        risk_factors: List the small-cap risk factor is appended to
        mega_cap_confidence_bonus: Confidence added for mega-caps (predictor only)

    Returns:
        (impact, confidence)
    """
    if market_cap is None:
        return impact, confidence

    if market_cap > settings["mega_cap_threshold"]:
        impact *= settings["mega_cap_multiplier"]
        confidence += mega_cap_confidence_bonus
    elif market_cap < settings["small_cap_threshold"]:
        impact *= settings["small_cap_multiplier"]
        confidence -= settings["small_cap_confidence_penalty"]
        risk_factors.append(SMALL_CAP_RISK)

    return impact, confidence


class CatalystScorer:
    """
    Scores catalyst drafts.

    Uses the store (when given) for the historical sample count and for
    outcome history behind `predicted_impact`.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, store=None):
        """
        Initialize scorer.

        Args:
            config: Pipeline configuration
            store: CatalystStore for history lookups (optional)
        """
        self.config = config or get_config()
        self.store = store
        self.settings = self.config.section("scorer")
        self.market_cap_settings = self.config.section("market_cap")

    def base_impact(self, catalyst_type: str, metadata: Optional[CatalystMetadata] = None) -> float:
        """Impact base rate for a type; filings use their form-type table."""
        impact = self.settings["impact_base"].get(catalyst_type, self.settings["default_impact"])

        if isinstance(metadata, FilingMetadata) and metadata.form_type:
            impact = self.settings["filing_form_impact"].get(metadata.form_type, impact)
            if metadata.form_type == "8-K" and metadata.high_impact_item:
                impact = min(
                    self.settings["filing_item_cap"],
                    impact + self.settings["filing_item_bump"]
                )

        return impact

    def base_confidence(self, catalyst_type: str) -> float:
        return self.settings["confidence_base"].get(catalyst_type, self.settings["default_confidence"])

    def prior_count(self, catalyst_type: str, ticker: str, before: datetime) -> int:
        if self.store is None:
            return 0
        return self.store.count_prior(
            catalyst_type, ticker, before, limit=self.settings["history_lookback"]
        )

    def score(
        self,
        catalyst_type: str,
        metadata: Optional[CatalystMetadata] = None,
        market_cap: Optional[float] = None,
        prior_count: int = 0,
        impact_weight: float = 1.0
    ) -> ScoreResult:
        """
        Compute impact and confidence.

        Args:
            catalyst_type: Catalyst type
            metadata: Typed metadata (filing form type, market cap)
            market_cap: Overrides metadata.market_cap when given
            prior_count: Prior catalysts of the same (type, ticker)
            impact_weight: 1.0 for primary drafts, damping factor for related ones

        Returns:
            ScoreResult with both scores clamped to [0, 1] and rounded to 2 decimals
        """
        impact = self.base_impact(catalyst_type, metadata) * impact_weight
        confidence = self.base_confidence(catalyst_type)
        risk_factors: List[str] = []

        if market_cap is None and metadata is not None:
            market_cap = metadata.market_cap

        impact, confidence = apply_market_cap(
            impact, confidence, market_cap, self.market_cap_settings, risk_factors
        )

        if prior_count > 10:
            confidence = min(0.95, confidence + 0.2)
        elif prior_count > 5:
            confidence = min(0.9, confidence + 0.1)

        return ScoreResult(
            impact_score=round_score(impact),
            confidence_score=round_score(confidence),
            prior_count=prior_count,
            risk_factors=risk_factors,
        )

    def predicted_impact(
        self,
        catalyst_type: str,
        ticker: str,
        event_date: datetime
    ) -> tuple:
        """
        Summarize outcomes of prior catalysts for the same (type, ticker).

        Returns:
            (predicted_impact dict or None, number of historical catalysts examined)
        """
        if self.store is None:
            return None, 0

        history = self.store.history(
            catalyst_type, ticker, event_date, limit=self.settings["outcome_lookback"]
        )
        if not history:
            return None, 0

        outcomes = [
            o
            for rows in self.store.outcomes_for(c.id for c in history).values()
            for o in rows
            if o.get("percentage_change") is not None
        ]
        if not outcomes:
            return None, len(history)

        n = len(outcomes)
        avg_change = sum(o["percentage_change"] for o in outcomes) / n
        avg_days = sum(o.get("days_after") or 0 for o in outcomes) / n

        return {
            "expected_change": round(avg_change, 4),
            "confidence": round(min(0.9, 0.5 + n * 0.05), 2),
            "timeframe_days": round(avg_days),
            "sample_size": n,
        }, len(history)

    def build(self, draft: CatalystDraft, with_prediction: bool = False) -> Catalyst:
        """
        Turn a draft into a scored Catalyst.

        Args:
            draft: Normalized draft
            with_prediction: Also attach metadata.predicted_impact from outcome history

        Returns:
            Catalyst (not yet stored)
        """
        prior = self.prior_count(draft.type, draft.ticker, draft.event_date)
        result = self.score(
            draft.type,
            metadata=draft.metadata,
            prior_count=prior,
            impact_weight=draft.impact_weight,
        )

        changes: Dict[str, Any] = {
            "similar_events_count": prior,
            "processed_at": utc_now().isoformat(),
            "risk_factors": _merge_unique(draft.metadata.risk_factors, result.risk_factors),
        }
        if with_prediction:
            predicted, _ = self.predicted_impact(draft.type, draft.ticker, draft.event_date)
            if predicted is not None:
                changes["predicted_impact"] = predicted

        return Catalyst(
            type=draft.type,
            ticker=draft.ticker,
            title=draft.title,
            description=draft.description,
            event_date=draft.event_date,
            impact_score=result.impact_score,
            confidence_score=result.confidence_score,
            metadata=draft.metadata.with_updates(**changes),
        )

    def rescore(self, catalyst: Catalyst) -> Catalyst:
        """Recompute scores and predicted_impact for a stored catalyst."""
        weight = 1.0
        if catalyst.metadata.relationship == "related":
            weight = self.config.get("normalizer.related_weight", 0.6)

        draft = CatalystDraft(
            type=catalyst.type,
            ticker=catalyst.ticker,
            title=catalyst.title,
            description=catalyst.description,
            event_date=catalyst.event_date,
            metadata=catalyst.metadata.with_updates(risk_factors=[]),
            impact_weight=weight,
        )
        rescored = self.build(draft, with_prediction=True)
        rescored.id = catalyst.id
        rescored.embedding = catalyst.embedding
        rescored.created_at = catalyst.created_at
        return rescored


def _merge_unique(first: List[str], second: List[str]) -> List[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged
