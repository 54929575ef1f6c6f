"""
Tests for Similarity Retriever
"""

import random
from datetime import datetime
from pathlib import Path

import numpy as np

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.config import PipelineConfig
from pipeline.models import CatalystMetadata
from pipeline.similarity import SimilarityRetriever, cosine_scores, fallback_events


def unit(*values, dim=8):
    vector = np.zeros(dim)
    vector[:len(values)] = values
    return (vector / np.linalg.norm(vector)).tolist()


class TestFallback:
    """Tests for the fixed fallback precedents."""

    def test_empty_store_returns_fallback(self, store, config):
        retriever = SimilarityRetriever(store, config, rng=random.Random(0))

        result = retriever.find_similar("regulatory", "MRK")

        assert result.method == "fallback"
        assert [e.ticker for e in result.events] == ["MRNA", "PFE"]

    def test_earnings_fallback_tickers(self):
        assert [e.ticker for e in fallback_events("earnings")] == ["AAPL", "GOOGL"]


class TestProxySimilarity:
    """Tests for the type/sector proxy score."""

    def test_sector_match_ranks_first(self, store, config, make_catalyst):
        store.insert_ignore([
            make_catalyst("JPM", event_date=datetime(2024, 10, 1),
                          metadata=CatalystMetadata.from_dict({"sector": "Financials"}, "earnings")),
            make_catalyst("MSFT", event_date=datetime(2024, 10, 2),
                          metadata=CatalystMetadata.from_dict({"sector": "Technology"}, "earnings")),
            make_catalyst("AAPL", event_date=datetime(2024, 10, 3),
                          metadata=CatalystMetadata.from_dict({"sector": "Technology"}, "earnings")),
        ])
        retriever = SimilarityRetriever(store, config, rng=random.Random(7))

        result = retriever.find_similar("earnings", "AAPL", sector="Technology")

        assert result.method == "proxy"
        assert [e.ticker for e in result.events][0] == "MSFT"
        assert "AAPL" not in [e.ticker for e in result.events]
        for event in result.events:
            assert 0.5 <= event.similarity_score <= 1.0
        assert result.events[0].similarity_score >= 0.8

    def test_seeded_rng_is_reproducible(self, store, config, make_catalyst):
        store.insert_ignore([make_catalyst(t, event_date=datetime(2024, 10, i + 1))
                             for i, t in enumerate(["JPM", "MSFT", "NVDA", "TSLA"])])

        first = SimilarityRetriever(store, config, rng=random.Random(3)).find_similar("earnings", "AAPL")
        second = SimilarityRetriever(store, config, rng=random.Random(3)).find_similar("earnings", "AAPL")

        assert [e.to_dict() for e in first.events] == [e.to_dict() for e in second.events]
        assert len(first.events) == 3

    def test_actual_movement_averages_outcomes(self, store, config, make_catalyst):
        catalyst_id = store.insert_ignore([make_catalyst("MSFT")])[0].id
        store.record_outcome(catalyst_id, 2.0)
        store.record_outcome(catalyst_id, 5.0)

        result = SimilarityRetriever(store, config, rng=random.Random(0)).find_similar("earnings", "AAPL")

        assert result.events[0].actual_movement == 3.5
        assert result.events[0].event_date == "2025-01-30"


class TestVectorSimilarity:
    """Tests for cosine similarity over stored embeddings."""

    def test_cosine_scores(self):
        matrix = np.asarray([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
        scores = cosine_scores([1.0, 0.0], matrix)

        assert scores.tolist() == [1.0, 0.0, 0.0]

    def test_nearest_embedding_first(self, store, config, make_catalyst):
        ids = [c.id for c in store.insert_ignore([
            make_catalyst("AAPL", event_date=datetime(2025, 1, 30)),
            make_catalyst("MSFT", event_date=datetime(2024, 10, 1)),
            make_catalyst("NVDA", event_date=datetime(2024, 11, 1)),
        ])]
        store.set_embedding(ids[0], unit(1.0, 0.1), "aapl")
        store.set_embedding(ids[1], unit(0.0, 1.0), "msft")
        store.set_embedding(ids[2], unit(1.0, 0.0), "nvda")

        reference = store.get(ids[0])
        result = SimilarityRetriever(store, config, rng=random.Random(0)).find_similar(
            "earnings", "AAPL", reference=reference
        )

        assert result.method == "vector"
        assert [e.ticker for e in result.events] == ["NVDA", "MSFT"]
        assert result.events[0].similarity_score > result.events[1].similarity_score
        assert result.events[0].similarity_score <= 1.0

    def test_only_earlier_same_type_events(self, store, config, make_catalyst):
        """Later events and other catalyst types are not historical precedents."""
        ids = [c.id for c in store.insert_ignore([
            make_catalyst("AAPL", event_date=datetime(2025, 1, 30)),
            make_catalyst("MSFT", event_date=datetime(2025, 4, 30)),
            make_catalyst("NVDA", "filing", event_date=datetime(2024, 11, 1)),
            make_catalyst("AMZN", event_date=datetime(2024, 10, 1)),
        ])]
        for catalyst_id in ids:
            store.set_embedding(catalyst_id, unit(1.0), "same text")

        result = SimilarityRetriever(store, config, rng=random.Random(0)).find_similar(
            "earnings", "AAPL", reference=store.get(ids[0])
        )

        assert result.method == "vector"
        assert [e.ticker for e in result.events] == ["AMZN"]

    def test_candidate_limit_keeps_most_recent(self, store, make_catalyst, tmp_path):
        config = PipelineConfig(
            config_path=str(tmp_path / "missing.json"),
            overrides={"predictor": {"vector_candidate_limit": 1}},
        )
        ids = [c.id for c in store.insert_ignore([
            make_catalyst("AAPL", event_date=datetime(2025, 1, 30)),
            make_catalyst("MSFT", event_date=datetime(2024, 10, 1)),
            make_catalyst("NVDA", event_date=datetime(2024, 12, 1)),
        ])]
        store.set_embedding(ids[0], unit(1.0, 0.0), "aapl")
        store.set_embedding(ids[1], unit(1.0, 0.0), "msft")
        store.set_embedding(ids[2], unit(0.0, 1.0), "nvda")

        result = SimilarityRetriever(store, config, rng=random.Random(0)).find_similar(
            "earnings", "AAPL", reference=store.get(ids[0])
        )

        assert [e.ticker for e in result.events] == ["NVDA"]

    def test_unembedded_reference_uses_proxy(self, store, config, make_catalyst):
        ids = [c.id for c in store.insert_ignore([
            make_catalyst("AAPL", event_date=datetime(2025, 1, 30)),
            make_catalyst("MSFT", event_date=datetime(2024, 10, 1)),
        ])]
        store.set_embedding(ids[1], unit(1.0), "msft")

        result = SimilarityRetriever(store, config, rng=random.Random(0)).find_similar(
            "earnings", "AAPL", reference=store.get(ids[0])
        )

        assert result.method == "proxy"
