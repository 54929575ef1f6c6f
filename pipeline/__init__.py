"""
Pipeline Module

Core components of the catalyst pipeline:
- Models: Catalyst records, typed metadata, prediction records
- Ingestion: Source adapters (openFDA, SEC-API.io, Polygon.io)
- Normalizer: Raw events -> catalyst drafts with related-ticker fan-out
- Upserter / Storage: First-write-wins merge on (ticker, event_date)
- Scorer: Rule-based impact/confidence
- Embeddings / Similarity: 384-dim vectors and similar-event retrieval
- Predictor: Cached feature-based predictions
- Freshness: Source recency and credential expiry checks
- Channel: At-most-once change notifications

Only the leaf modules are re-exported here; the integrations package
imports pipeline.errors, so components are imported from their modules.
"""

from .config import PipelineConfig, get_config
from .errors import (
    CatalystPipelineError,
    UpstreamFetchError,
    RateLimitedError,
    CredentialMissingError,
    EntityResolutionMiss,
    CatalystValidationError,
    PersistenceError,
    PredictionError,
    CatalystNotFoundError,
)
from .models import (
    Catalyst,
    CatalystDraft,
    CatalystMetadata,
    RawEvent,
    FeatureVector,
    PredictionResult,
)

__all__ = [
    "PipelineConfig",
    "get_config",
    "CatalystPipelineError",
    "UpstreamFetchError",
    "RateLimitedError",
    "CredentialMissingError",
    "EntityResolutionMiss",
    "CatalystValidationError",
    "PersistenceError",
    "PredictionError",
    "CatalystNotFoundError",
    "Catalyst",
    "CatalystDraft",
    "CatalystMetadata",
    "RawEvent",
    "FeatureVector",
    "PredictionResult",
]
