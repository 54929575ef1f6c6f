"""
Pytest Configuration and Fixtures
"""

import random
from datetime import datetime

import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep developer environment variables out of the tests."""
    for name in ("CATALYST_DB_URL", "CATALYST_CONFIG_PATH", "CATALYST_CREDENTIALS_PATH", "CATALYST_CHANNEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fixed_now():
    """Deterministic clock for components that take `now_fn`."""
    return lambda: FIXED_NOW


@pytest.fixture
def config(tmp_path):
    """Pipeline configuration pointing at a temporary database."""
    from pipeline.config import PipelineConfig
    return PipelineConfig(overrides={"database_url": f"sqlite:///{tmp_path / 'catalysts.db'}"})


@pytest.fixture
def store(config):
    """Fresh SQLite catalyst store per test."""
    from pipeline.storage import CatalystStore
    catalyst_store = CatalystStore(config.database_url)
    yield catalyst_store
    catalyst_store.close()


@pytest.fixture
def credentials():
    """Empty in-memory credential store."""
    from pipeline.credentials import InMemoryCredentialStore
    return InMemoryCredentialStore()


@pytest.fixture
def scorer(config, store):
    from pipeline.scorer import CatalystScorer
    return CatalystScorer(config, store)


@pytest.fixture
def resolver():
    """Entity resolver with a small fixed mapping table."""
    from pipeline.entity_resolver import EntityResolver
    from pipeline.models import EntityMapping
    return EntityResolver(mappings=[
        EntityMapping(
            raw_name="KEYTRUDA",
            primary_ticker="MRK",
            aliases=["PEMBROLIZUMAB"],
            related_tickers=["MRK", "BMY", "AZN"],
            category="PD-1 inhibitor",
            issuer="Merck & Co.",
        ),
        EntityMapping(
            raw_name="OZEMPIC",
            primary_ticker="NVO",
            aliases=["SEMAGLUTIDE"],
            related_tickers=["LLY"],
            category="GLP-1 agonist",
            issuer="Novo Nordisk",
        ),
    ])


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def make_catalyst():
    """Factory for scored, unsaved catalysts."""
    from pipeline.models import Catalyst, CatalystMetadata

    def _make(ticker="AAPL", catalyst_type="earnings", event_date=None, **kwargs):
        metadata = kwargs.pop("metadata", None) or CatalystMetadata.from_dict({}, catalyst_type)
        return Catalyst(
            type=catalyst_type,
            ticker=ticker,
            title=kwargs.pop("title", f"{ticker} {catalyst_type}"),
            description=kwargs.pop("description", f"{ticker} {catalyst_type} event"),
            event_date=event_date or datetime(2025, 1, 30),
            impact_score=kwargs.pop("impact_score", 0.5),
            confidence_score=kwargs.pop("confidence_score", 0.7),
            metadata=metadata,
            **kwargs
        )

    return _make


@pytest.fixture
def orchestrator(config, store, credentials, fixed_now, rng):
    """Fully wired orchestrator with offline collaborators."""
    from cli.commands import PipelineOrchestrator
    from pipeline.channel import InMemoryChangeChannel
    from unittest.mock import MagicMock

    return PipelineOrchestrator(
        config=config,
        store=store,
        credentials=credentials,
        channel=InMemoryChangeChannel(),
        session=MagicMock(),
        sleep=lambda seconds: None,
        now_fn=fixed_now,
        rng=rng,
    )
