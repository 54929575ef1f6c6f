"""
Tests for Embedding Generator and Backfiller
"""

import pytest
import numpy as np
from pathlib import Path
from unittest.mock import MagicMock, patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.credentials import InMemoryCredentialStore
from pipeline.embeddings import (
    EMBEDDING_DIM,
    EmbeddingBackfiller,
    EmbeddingGenerator,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    _string_hash,
    deterministic_embedding,
    tokenize,
)
from pipeline.models import Credential


def mock_provider(**kwargs):
    provider = MagicMock(**kwargs)
    provider.name = "mock"
    return provider


class TestDeterministicEmbedding:
    """Tests for the hashed bag-of-words path."""

    def test_tokenize(self):
        assert tokenize("FDA Adverse-Event: KEYTRUDA, 2 of 3!") == ["fda", "adverseevent", "keytruda"]

    def test_string_hash_matches_int32_rolling_hash(self):
        assert _string_hash("abc") == 96354
        assert _string_hash("") == 0
        # wraps into the signed 32-bit range
        assert -2**31 <= _string_hash("pembrolizumab-keytruda-adverse") < 2**31

    @pytest.mark.parametrize("text", [
        "earnings AAPL Apple Inc. Earnings Report",
        "regulatory MRK FDA Adverse Event Report: KEYTRUDA",
        "x" * 5000,
    ])
    def test_length_and_unit_norm(self, text):
        vector = deterministic_embedding(text)

        assert len(vector) == EMBEDDING_DIM
        assert abs(np.linalg.norm(vector) - 1.0) < 1e-6

    def test_deterministic(self):
        assert deterministic_embedding("Fed rate decision") == deterministic_embedding("Fed rate decision")

    def test_text_without_tokens_is_zero(self):
        vector = deterministic_embedding("a b c")

        assert len(vector) == EMBEDDING_DIM
        assert not any(vector)


class TestEmbeddingGenerator:
    """Tests for provider selection, validation and fallback."""

    def test_no_credential_uses_deterministic_path(self, config):
        generator = EmbeddingGenerator(config, InMemoryCredentialStore())

        assert generator.provider is None
        assert generator.batch_size == 100
        assert generator.embed("earnings AAPL report") == deterministic_embedding("earnings AAPL report")

    def test_openai_credential_selects_provider(self, config):
        credentials = InMemoryCredentialStore([Credential(service_name="openai", api_key="sk-test")])
        generator = EmbeddingGenerator(config, credentials)

        assert isinstance(generator.provider, OpenAIEmbeddingProvider)
        assert generator.provider.client.dimensions == EMBEDDING_DIM
        assert generator.batch_size == 50

    def test_provider_output_is_renormalized(self, config):
        raw = [3.0] + [0.0] * (EMBEDDING_DIM - 1)
        provider = mock_provider()
        provider.embed.return_value = [raw]
        generator = EmbeddingGenerator(config, provider=provider)

        vector = generator.embed("earnings AAPL report")

        assert vector[0] == pytest.approx(1.0)
        assert abs(np.linalg.norm(vector) - 1.0) < 1e-6

    def test_provider_failure_falls_back(self, config):
        provider = mock_provider()
        provider.embed.side_effect = RuntimeError("provider down")
        generator = EmbeddingGenerator(config, provider=provider)

        vectors = generator.embed_many(["earnings AAPL report", "filing MSFT 10-K"])

        assert vectors == [
            deterministic_embedding("earnings AAPL report"),
            deterministic_embedding("filing MSFT 10-K"),
        ]

    def test_malformed_vector_falls_back_per_text(self, config):
        good = [0.0] * EMBEDDING_DIM
        good[5] = 2.0
        provider = mock_provider()
        provider.embed.return_value = [good, [1.0, 2.0]]
        generator = EmbeddingGenerator(config, provider=provider)

        vectors = generator.embed_many(["first text here", "second text here"])

        assert vectors[0][5] == pytest.approx(1.0)
        assert vectors[1] == deterministic_embedding("second text here")
        for vector in vectors:
            assert len(vector) == EMBEDDING_DIM

    def test_texts_without_tokens_skip_provider(self, config):
        provider = mock_provider()
        provider.embed.return_value = [[1.0] * EMBEDDING_DIM]
        generator = EmbeddingGenerator(config, provider=provider)

        vectors = generator.embed_many(["", "quarterly earnings report"])

        provider.embed.assert_called_once_with(["quarterly earnings report"])
        assert not any(vectors[0])


class TestEmbeddingBackfiller:
    """Tests for the batch backfill loop."""

    def test_backfills_until_exhausted(self, config, store, make_catalyst):
        store.insert_ignore([make_catalyst(t) for t in ("AAPL", "MSFT", "NVDA")])
        generator = EmbeddingGenerator(config)

        processed = EmbeddingBackfiller(store, generator).run()

        assert processed == 3
        assert store.missing_embeddings(10) == []
        stored = store.get(1)
        assert len(stored.embedding) == EMBEDDING_DIM
        assert abs(np.linalg.norm(stored.embedding) - 1.0) < 1e-6

    def test_max_batches(self, store, make_catalyst, tmp_path):
        from pipeline.config import PipelineConfig
        config = PipelineConfig(
            config_path=str(tmp_path / "missing.json"),
            overrides={"embeddings": {"batch_size": 2}},
        )
        store.insert_ignore([make_catalyst(t) for t in ("AAPL", "MSFT", "NVDA")])

        processed = EmbeddingBackfiller(store, EmbeddingGenerator(config)).run(max_batches=1)

        assert processed == 2
        assert len(store.missing_embeddings(10)) == 1

    def test_nothing_to_do(self, config, store):
        assert EmbeddingBackfiller(store, EmbeddingGenerator(config)).run() == 0


class TestLocalModelProvider:
    """Tests for the sentence-transformers path."""

    def test_local_model_from_config(self, tmp_path):
        from pipeline.config import PipelineConfig
        config = PipelineConfig(
            config_path=str(tmp_path / "missing.json"),
            overrides={"embeddings": {"local_model": "sentence-transformers/all-MiniLM-L6-v2"}},
        )

        generator = EmbeddingGenerator(config, InMemoryCredentialStore())

        assert isinstance(generator.provider, SentenceTransformerProvider)

    def test_encodes_with_managed_model(self):
        model = MagicMock()
        model.encode.return_value = np.ones((1, EMBEDDING_DIM))
        manager = MagicMock()
        manager.get_sentence_transformer.return_value = model

        with patch("pipeline.embeddings.get_model_manager", return_value=manager):
            vectors = SentenceTransformerProvider("mini").embed(["earnings report"])

        manager.get_sentence_transformer.assert_called_once_with("mini")
        assert len(vectors[0]) == EMBEDDING_DIM

    def test_unavailable_model_raises(self):
        manager = MagicMock()
        manager.get_sentence_transformer.return_value = None

        with patch("pipeline.embeddings.get_model_manager", return_value=manager):
            with pytest.raises(RuntimeError):
                SentenceTransformerProvider("mini").embed(["earnings report"])
