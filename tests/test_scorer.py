"""
Tests for Catalyst Scorer
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.models import CatalystDraft, CatalystMetadata, EarningsMetadata, FilingMetadata
from pipeline.scorer import SMALL_CAP_RISK, CatalystScorer, apply_market_cap


class TestBaseRates:
    """Tests for the base-rate tables."""

    def test_type_base_rates(self, config):
        """Each catalyst type has its own impact and confidence base."""
        scorer = CatalystScorer(config)

        assert scorer.base_impact("rate-decision") == 0.95
        assert scorer.base_impact("regulatory") == 0.7
        assert scorer.base_impact("earnings") == 0.5
        assert scorer.base_confidence("filing") == 0.9
        assert scorer.base_confidence("macro") == 0.5

    def test_filing_form_table(self, config):
        """Filings use the form-type table instead of the type base."""
        scorer = CatalystScorer(config)

        assert scorer.base_impact("filing", FilingMetadata(form_type="10-K")) == 0.8
        assert scorer.base_impact("filing", FilingMetadata(form_type="S-1")) == 0.95
        assert scorer.base_impact("filing", FilingMetadata(form_type="S-8")) == 0.4

    def test_8k_high_impact_item_is_capped(self, config):
        """An 8-K with a high-impact item gets a bump capped at 0.8."""
        scorer = CatalystScorer(config)
        metadata = FilingMetadata(form_type="8-K", high_impact_item="Item 1.01")

        assert scorer.base_impact("filing", metadata) == 0.8


class TestScore:
    """Tests for CatalystScorer.score()."""

    def test_mega_cap_multiplier(self, config):
        """A 600B company with base 0.5 scores 0.6."""
        scorer = CatalystScorer(config)
        result = scorer.score("earnings", market_cap=600e9)

        assert result.impact_score == 0.6
        assert result.confidence_score == 0.7

    def test_small_cap_penalty(self, config):
        """Small caps lose impact and confidence and get a risk factor."""
        scorer = CatalystScorer(config)
        result = scorer.score("earnings", market_cap=5e9)

        assert result.impact_score == 0.4
        assert result.confidence_score == 0.6
        assert SMALL_CAP_RISK in result.risk_factors

    def test_market_cap_from_metadata(self, config):
        """Metadata market cap is used when none is passed."""
        scorer = CatalystScorer(config)
        result = scorer.score("earnings", metadata=EarningsMetadata(market_cap=3e12))

        assert result.impact_score == 0.6

    def test_history_confidence_bumps(self, config):
        """More prior catalysts raise confidence, with caps."""
        scorer = CatalystScorer(config)

        assert scorer.score("earnings", prior_count=3).confidence_score == 0.7
        assert scorer.score("earnings", prior_count=6).confidence_score == 0.8
        assert scorer.score("earnings", prior_count=11).confidence_score == 0.9
        assert scorer.score("filing", prior_count=11).confidence_score == 0.95

    def test_related_weight_dampens_impact(self, config):
        """Related drafts carry a 0.6 weight."""
        scorer = CatalystScorer(config)
        result = scorer.score("regulatory", impact_weight=0.6)

        assert result.impact_score == 0.42

    @pytest.mark.parametrize("catalyst_type", ["regulatory", "earnings", "filing", "rate-decision", "macro"])
    def test_scores_in_unit_interval(self, config, catalyst_type):
        """Scores stay in [0, 1] even with every bump applied."""
        scorer = CatalystScorer(config)
        result = scorer.score(catalyst_type, market_cap=2e12, prior_count=20)

        assert 0.0 <= result.impact_score <= 1.0
        assert 0.0 <= result.confidence_score <= 1.0
        assert result.impact_score == round(result.impact_score, 2)


class TestApplyMarketCap:
    """Tests for the shared market-cap rule."""

    def test_unknown_market_cap_is_neutral(self, config):
        risks = []
        assert apply_market_cap(0.5, 0.7, None, config.section("market_cap"), risks) == (0.5, 0.7)
        assert risks == []

    def test_mid_cap_is_neutral(self, config):
        risks = []
        assert apply_market_cap(0.5, 0.7, 50e9, config.section("market_cap"), risks) == (0.5, 0.7)


class TestBuildAndHistory:
    """Tests for build(), predicted_impact() and rescore() against a store."""

    def _store_history(self, store, make_catalyst, changes):
        ids = []
        for i, change in enumerate(changes):
            catalyst = make_catalyst(
                ticker="AAPL",
                event_date=datetime(2024, 1, 30) + timedelta(days=90 * i),
            )
            inserted = store.insert_ignore([catalyst])
            store.record_outcome(inserted[0].id, change, days_after=2)
            ids.append(inserted[0].id)
        return ids

    def test_build_sets_processing_metadata(self, scorer):
        """build() records the prior count and processing time."""
        draft = CatalystDraft(
            type="earnings",
            ticker="AAPL",
            title="Apple Inc. Earnings Report",
            description="Quarterly earnings report.",
            event_date=datetime(2025, 1, 30),
            metadata=EarningsMetadata(market_cap=3e12),
        )
        catalyst = scorer.build(draft)

        assert catalyst.impact_score == 0.6
        assert catalyst.metadata.similar_events_count == 0
        assert catalyst.metadata.processed_at is not None
        assert catalyst.id is None

    def test_predicted_impact_from_outcomes(self, scorer, store, make_catalyst):
        """Prior outcomes are averaged into predicted_impact."""
        self._store_history(store, make_catalyst, [4.0, -2.0])

        predicted, history_len = scorer.predicted_impact("earnings", "AAPL", datetime(2025, 6, 1))

        assert history_len == 2
        assert predicted["expected_change"] == 1.0
        assert predicted["sample_size"] == 2
        assert predicted["confidence"] == 0.6
        assert predicted["timeframe_days"] == 2

    def test_predicted_impact_without_history(self, scorer):
        predicted, history_len = scorer.predicted_impact("earnings", "ZZZZ", datetime(2025, 6, 1))

        assert predicted is None
        assert history_len == 0

    def test_rescore_keeps_identity(self, scorer, store, make_catalyst):
        """rescore() keeps id and embedding and refreshes predicted_impact."""
        self._store_history(store, make_catalyst, [3.0])
        target = store.insert_ignore([make_catalyst(ticker="AAPL", event_date=datetime(2025, 1, 30))])[0]

        rescored = scorer.rescore(target)

        assert rescored.id == target.id
        assert rescored.metadata.predicted_impact["expected_change"] == 3.0
        assert rescored.metadata.similar_events_count == 1

    def test_metadata_variant_survives_build(self, scorer):
        draft = CatalystDraft(
            type="filing",
            ticker="MSFT",
            title="MSFT Files Form 8-K",
            description="Material event.",
            event_date=datetime(2025, 1, 10),
            metadata=CatalystMetadata.from_dict({"form_type": "8-K"}, "filing"),
        )
        catalyst = scorer.build(draft)

        assert isinstance(catalyst.metadata, FilingMetadata)
        assert catalyst.metadata.to_dict()["kind"] == "filing"
