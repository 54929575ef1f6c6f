"""
CLI Command Handlers

PipelineOrchestrator wires every pipeline stage together and is shared by
the CLI and the HTTP API.
"""

import json
import logging
import random
import sys
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import requests

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from pipeline.channel import ChangeChannel, build_channel
from pipeline.config import PipelineConfig, get_config
from pipeline.credentials import CredentialStore, build_credential_store
from pipeline.embeddings import EmbeddingBackfiller, EmbeddingGenerator, EmbeddingProvider
from pipeline.entity_resolver import EntityResolver
from pipeline.errors import CatalystNotFoundError, CatalystValidationError
from pipeline.features import FeatureExtractor, FeatureProviders
from pipeline.freshness import FreshnessMonitor
from pipeline.ingestion import ADAPTERS, StaticEarningsAdapter
from pipeline.models import CATALYST_TYPES, CompanyProfile, DateRange, FeatureVector, PredictionResult, RawEvent
from pipeline.normalizer import CatalystNormalizer
from pipeline.predictor import Predictor
from pipeline.scorer import CatalystScorer
from pipeline.similarity import SimilarityRetriever
from pipeline.storage import CatalystStore
from pipeline.upserter import CatalystUpserter
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


DEFAULT_PROFILES_PATH = project_root / "config" / "company_profiles.json"


class PipelineOrchestrator:
    """
    Orchestrates the catalyst pipeline.

    Stages:
    1. Source adapter fetch (raw events)
    2. Normalize (entity resolution, templates, related-ticker fan-out)
    3. Score and upsert (first write wins on (ticker, event_date))
    4. Embedding backfill
    5. Prediction (cached)
    6. Freshness monitoring
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        store: Optional[CatalystStore] = None,
        credentials: Optional[CredentialStore] = None,
        channel: Optional[ChangeChannel] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        now_fn=utc_now,
        feature_providers: Optional[FeatureProviders] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize orchestrator with all pipeline components.

        Every collaborator can be injected; the defaults come from
        configuration and the environment.
        """
        logger.info("Initializing PipelineOrchestrator...")
        self.config = config or get_config()
        self.store = store or CatalystStore(self.config.database_url)
        self.credentials = credentials if credentials is not None else build_credential_store()
        self.channel = channel or build_channel(self.config.section("channel"))
        self.session = session
        self.sleep = sleep
        self.now_fn = now_fn

        self.resolver = EntityResolver()
        self.scorer = CatalystScorer(self.config, self.store)
        self.normalizer = CatalystNormalizer(self.resolver, self.scorer, self.config)
        self.upserter = CatalystUpserter(self.store, self.scorer, self.channel)

        self.embeddings = EmbeddingGenerator(self.config, self.credentials, embedding_provider)
        self.backfiller = EmbeddingBackfiller(self.store, self.embeddings)

        self.retriever = SimilarityRetriever(self.store, self.config, rng=rng)
        self.extractor = FeatureExtractor(self.store, feature_providers, now_fn=now_fn)
        self.predictor = Predictor(
            self.store, self.config, self.extractor, self.retriever, now_fn=now_fn
        )
        self.freshness_monitor = FreshnessMonitor(
            self.store, self.credentials, self.config, now_fn=now_fn
        )
        logger.info("PipelineOrchestrator initialized successfully")

    # ------------------------------------------------------------------
    # Batch ingestion
    # ------------------------------------------------------------------

    def build_adapter(self, source: str, calendar_path: Optional[str] = None):
        """Create the adapter for a source name."""
        kwargs = dict(
            credentials=self.credentials,
            config=self.config,
            session=self.session,
            sleep=self.sleep,
        )
        if calendar_path:
            if source != "earnings":
                raise ValueError("A calendar file is only supported for the earnings source")
            return StaticEarningsAdapter(calendar_path, **kwargs)

        adapter_cls = ADAPTERS.get(source)
        if adapter_cls is None:
            raise ValueError(f"Unknown source: {source}. Choose from {sorted(ADAPTERS)}")
        return adapter_cls(**kwargs)

    def run_adapter(
        self,
        source: str,
        window: Optional[DateRange] = None,
        calendar_path: Optional[str] = None
    ) -> Dict:
        """
        Run one source adapter end to end.

        Args:
            source: regulatory | filings | earnings
            window: Date window (adapter default when None)
            calendar_path: Static earnings calendar instead of Polygon

        Returns:
            Envelope with `processed` (raw events seen) and `catalysts` (rows inserted)

        Raises:
            CredentialMissingError: Required API key not configured
            PersistenceError: The batch write failed
        """
        adapter = self.build_adapter(source, calendar_path)
        fetched = adapter.fetch(window)

        normalized = self.normalizer.normalize_batch(fetched.events)
        upserted = self.upserter.upsert(normalized.drafts)

        message = (
            f"{source}: {fetched.fetched} records, {len(fetched.events)} events, "
            f"{upserted.inserted_count} new catalysts "
            f"({normalized.skipped + fetched.skipped} skipped, {upserted.skipped} already stored)"
        )
        logger.info(message)

        return {
            "success": True,
            "processed": len(fetched.events),
            "catalysts": upserted.inserted_count,
            "message": message,
            "details": {
                "adapter": fetched.to_dict(),
                "unresolved": normalized.unresolved,
                "invalid": normalized.invalid,
                "duplicates": normalized.duplicates,
                "already_stored": upserted.skipped,
            },
        }

    # ------------------------------------------------------------------
    # Direct submission
    # ------------------------------------------------------------------

    def process_submission(self, submission: Dict) -> Dict:
        """
        Score and store one directly submitted catalyst.

        A submission whose (ticker, event_date) is already stored returns the
        stored row unchanged with `created: False`.

        Args:
            submission: {type, ticker, title, description?, event_date, source_data?}

        Returns:
            {catalyst, created, predicted_impact, historical_data_points}

        Raises:
            CatalystValidationError: Missing ticker, unknown type or bad date
        """
        if not submission.get("ticker"):
            raise CatalystValidationError("missing ticker")
        if not submission.get("title"):
            raise CatalystValidationError("missing title")

        source_data = submission.get("source_data") or {}
        event = RawEvent(
            source="direct",
            catalyst_type=submission.get("type"),
            event_date=submission.get("event_date"),
            ticker=submission["ticker"],
            title=submission["title"],
            summary=submission.get("description"),
            fields=dict(source_data),
        )
        draft = self.normalizer.normalize(event)[0]
        if source_data:
            draft.metadata = draft.metadata.with_updates(source_data=source_data)

        predicted, history_len = self.scorer.predicted_impact(draft.type, draft.ticker, draft.event_date)

        inserted = self.upserter.upsert([draft], with_prediction=True).inserted
        if inserted:
            catalyst = inserted[0]
            created = True
        else:
            catalyst = self.store.get_by_key(draft.ticker, draft.event_date)
            created = False
            logger.info(f"Catalyst for {draft.ticker} on {draft.event_date:%Y-%m-%d} already stored (id={catalyst.id})")

        return {
            "catalyst": catalyst.to_dict(),
            "created": created,
            "predicted_impact": predicted,
            "historical_data_points": history_len,
        }

    def rescore(self, catalyst_id: int) -> Dict:
        """Recompute scores for a stored catalyst and publish an update."""
        catalyst = self.store.get(catalyst_id)
        if catalyst is None:
            raise CatalystNotFoundError(catalyst_id)

        rescored = self.scorer.rescore(catalyst)
        updated = self.store.update_scores(
            catalyst_id, rescored.impact_score, rescored.confidence_score, rescored.metadata
        )
        self.upserter.publish("update", updated)
        logger.info(
            f"Rescored catalyst {catalyst_id}: impact {catalyst.impact_score} -> {updated.impact_score}, "
            f"confidence {catalyst.confidence_score} -> {updated.confidence_score}"
        )
        return updated.to_dict()

    # ------------------------------------------------------------------
    # Prediction, embeddings, monitoring
    # ------------------------------------------------------------------

    def predict(
        self,
        catalyst_id: Optional[int] = None,
        features: Optional[FeatureVector] = None
    ) -> PredictionResult:
        """Predict for a stored catalyst (cached) or for explicit features."""
        if catalyst_id is not None:
            return self.predictor.predict_for_catalyst(catalyst_id)
        if features is not None:
            return self.predictor.predict_for_features(features)
        raise ValueError("Either catalyst_id or features is required")

    def backfill(self, max_batches: Optional[int] = None) -> Dict:
        processed = self.backfiller.run(max_batches=max_batches)
        return {
            "success": True,
            "processed": processed,
            "message": f"Generated embeddings for {processed} catalysts",
        }

    def freshness(self) -> Dict:
        report = self.freshness_monitor.check()
        return {"success": True, **report.to_dict()}

    def seed_profiles(self, path: Optional[str] = None) -> int:
        """Load company profiles from JSON into the store."""
        path = Path(path) if path else DEFAULT_PROFILES_PATH
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        count = 0
        for entry in data.get("profiles", []):
            self.store.upsert_profile(CompanyProfile.from_dict(entry))
            count += 1
        logger.info(f"Seeded {count} company profiles from {path}")
        return count

    def stats(self) -> Dict:
        by_type = {t: self.store.count(t) for t in CATALYST_TYPES}
        return {"total": self.store.count(), "by_type": by_type}


# Singleton instance
_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    """Get or create the shared orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[PipelineOrchestrator]) -> None:
    """Replace the shared orchestrator (tests, custom wiring)."""
    global _orchestrator
    _orchestrator = orchestrator


def show_freshness(orchestrator: Optional[PipelineOrchestrator] = None) -> None:
    """Print a freshness report."""
    orchestrator = orchestrator or get_orchestrator()
    report = orchestrator.freshness()
    health = report["overallHealth"]

    print(f"\n{'='*60}")
    print(f"Data Freshness ({report['timestamp']})")
    print(f"{'='*60}")
    for source in report["dataFreshness"]:
        marker = "STALE" if source["isStale"] else "ok"
        print(
            f"  {source['source']:<20} {source['recordCount']:>6} records  "
            f"newest {source['newestRecord'] or '-'}  [{marker}]"
        )
    for key in report["expiringApiKeys"]:
        print(f"  API key {key['service_name']} expires {key['expires_at']}")
    print(f"\nStatus: {health['status']}")
    for message in health["messages"]:
        print(f"  - {message}")


def show_stats(orchestrator: Optional[PipelineOrchestrator] = None) -> None:
    """Print catalyst counts."""
    orchestrator = orchestrator or get_orchestrator()
    stats = orchestrator.stats()
    print(f"\n{'='*40}")
    print("Catalyst Statistics")
    print(f"{'='*40}")
    print(f"Total catalysts: {stats['total']}")
    for catalyst_type, count in stats["by_type"].items():
        print(f"  {catalyst_type:<15} {count}")
