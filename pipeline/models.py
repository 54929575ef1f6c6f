"""
Catalyst Data Models

Defines the core records flowing through the pipeline:
- RawEvent: one upstream record as fetched by a source adapter
- CatalystDraft: normalized record awaiting scoring
- Catalyst: canonical stored record, natural key (ticker, event_date)
- CatalystMetadata: typed metadata, one variant per catalyst type
- EntityMapping: raw identifier -> primary/related tickers
- Credential: external service credential
- PredictionCacheEntry: append-only predictor cache row
- FeatureVector: ephemeral predictor inputs
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type

from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


# Type definitions
CatalystType = Literal["regulatory", "earnings", "filing", "rate-decision", "macro"]
CATALYST_TYPES = ("regulatory", "earnings", "filing", "rate-decision", "macro")

SourceName = Literal["regulatory", "filings", "earnings"]


def round_score(value: float) -> float:
    """Clamp a score to [0, 1] and round to 2 decimals."""
    return round(min(max(value, 0.0), 1.0), 2)


@dataclass
class DateRange:
    """Inclusive window of event dates an adapter is asked to fetch."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        """Window covering the past `days` days up to now."""
        now = now or utc_now()
        return cls(start=now - timedelta(days=days), end=now)

    @classmethod
    def next_days(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        """Window covering now up to `days` days ahead."""
        now = now or utc_now()
        return cls(start=now, end=now + timedelta(days=days))

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def widened(self, days: int) -> "DateRange":
        """Same end, start moved back so the window spans `days` days."""
        return DateRange(start=self.end - timedelta(days=days), end=self.end)


@dataclass
class RawEvent:
    """
    One upstream record as returned by a source adapter.

    `raw_identifier` is the value handed to the entity resolver (e.g. a
    drug name); sources that already carry a ticker set `ticker` instead.
    """
    source: str
    catalyst_type: CatalystType
    event_date: Any  # unparsed upstream value, validated by the normalizer
    raw_identifier: Optional[str] = None
    ticker: Optional[str] = None
    external_id: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EntityMapping:
    """Maps a raw name (and its aliases) to one primary ticker plus related tickers."""
    raw_name: str
    primary_ticker: str
    aliases: List[str] = field(default_factory=list)
    related_tickers: List[str] = field(default_factory=list)
    category: Optional[str] = None
    issuer: Optional[str] = None

    def names(self) -> List[str]:
        """All names this mapping answers to, upper-cased."""
        return [n.upper() for n in [self.raw_name] + self.aliases]

    @classmethod
    def from_dict(cls, data: dict) -> "EntityMapping":
        return cls(
            raw_name=data["raw_name"],
            primary_ticker=data["primary_ticker"],
            aliases=data.get("aliases", []),
            related_tickers=data.get("related_tickers", []),
            category=data.get("category"),
            issuer=data.get("issuer"),
        )


@dataclass
class Credential:
    """Credential for one external service."""
    service_name: str
    api_key: str
    rate_limit: Optional[int] = None
    rate_window: Optional[str] = None  # second | minute | day
    expires_at: Optional[datetime] = None

    def expires_within(self, days: int, now: Optional[datetime] = None) -> bool:
        """True if the credential expires (or has expired) within `days` days."""
        if self.expires_at is None:
            return False
        now = now or utc_now()
        return self.expires_at - now < timedelta(days=days)

    def to_dict(self) -> dict:
        """Serialize without the secret."""
        return {
            "service_name": self.service_name,
            "rate_limit": self.rate_limit,
            "rate_window": self.rate_window,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


# ---------------------------------------------------------------------------
# Typed metadata
# ---------------------------------------------------------------------------

@dataclass
class CatalystMetadata:
    """
    Metadata common to every catalyst type.

    Subclasses add the fields known for one catalyst type. Keys that no
    variant knows about are preserved in `extra` and written back flat.
    """
    kind: ClassVar[str] = "generic"

    market_cap: Optional[float] = None
    sector: Optional[str] = None
    related_tickers: List[str] = field(default_factory=list)
    relationship: Optional[str] = None  # primary | related
    primary_ticker: Optional[str] = None
    risk_factors: List[str] = field(default_factory=list)
    predicted_impact: Optional[Dict[str, Any]] = None
    similar_events_count: Optional[int] = None
    source: Optional[str] = None
    source_data: Optional[Dict[str, Any]] = None
    processed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Flatten to a JSON object with a `kind` discriminator."""
        data: Dict[str, Any] = {"kind": self.kind}
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            data[f.name] = value
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(
        cls,
        data: Optional[dict],
        catalyst_type: Optional[str] = None
    ) -> "CatalystMetadata":
        """
        Build the metadata variant for a catalyst type.

        Args:
            data: Flat metadata dict (as stored)
            catalyst_type: Used when `data` carries no `kind`

        Returns:
            The matching CatalystMetadata subclass instance
        """
        data = dict(data or {})
        kind = data.pop("kind", None) or catalyst_type or "generic"
        target = METADATA_BY_KIND.get(kind, CatalystMetadata)
        known = {f.name for f in fields(target)} - {"extra"}

        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return target(extra=extra, **kwargs)

    def with_updates(self, **changes) -> "CatalystMetadata":
        """Copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass
class RegulatoryMetadata(CatalystMetadata):
    kind: ClassVar[str] = "regulatory"

    report_id: Optional[str] = None
    drug_name: Optional[str] = None
    drug_class: Optional[str] = None
    indication: Optional[str] = None
    serious: Optional[bool] = None
    manufacturer: Optional[str] = None


@dataclass
class FilingMetadata(CatalystMetadata):
    kind: ClassVar[str] = "filing"

    form_type: Optional[str] = None
    accession_no: Optional[str] = None
    cik: Optional[str] = None
    company_name: Optional[str] = None
    filing_url: Optional[str] = None
    viewer_url: Optional[str] = None
    filed_at: Optional[str] = None
    high_impact_item: Optional[str] = None


@dataclass
class EarningsMetadata(CatalystMetadata):
    kind: ClassVar[str] = "earnings"

    company_name: Optional[str] = None
    fiscal_date_ending: Optional[str] = None
    eps_estimate: Optional[float] = None
    currency: Optional[str] = None
    report_time: Optional[str] = None


@dataclass
class RateDecisionMetadata(CatalystMetadata):
    kind: ClassVar[str] = "rate-decision"

    current_rate: Optional[float] = None
    expected_change_bps: Optional[float] = None


@dataclass
class MacroMetadata(CatalystMetadata):
    kind: ClassVar[str] = "macro"

    indicator: Optional[str] = None
    region: Optional[str] = None


METADATA_BY_KIND: Dict[str, Type[CatalystMetadata]] = {
    "generic": CatalystMetadata,
    "regulatory": RegulatoryMetadata,
    "filing": FilingMetadata,
    "earnings": EarningsMetadata,
    "rate-decision": RateDecisionMetadata,
    "macro": MacroMetadata,
}


# ---------------------------------------------------------------------------
# Catalysts
# ---------------------------------------------------------------------------

@dataclass
class CatalystDraft:
    """
    Normalized catalyst awaiting scoring.

    `impact_weight` is 1.0 for the primary ticker and the related-ticker
    damping factor for fan-out drafts.
    """
    type: CatalystType
    ticker: str
    title: str
    description: str
    event_date: datetime
    metadata: CatalystMetadata
    impact_weight: float = 1.0

    @property
    def natural_key(self) -> tuple:
        return (self.ticker, self.event_date)


@dataclass
class Catalyst:
    """Canonical catalyst record. Natural key is (ticker, event_date)."""
    type: CatalystType
    ticker: str
    title: str
    description: str
    event_date: datetime
    impact_score: float
    confidence_score: float
    metadata: CatalystMetadata
    id: Optional[int] = None
    embedding: Optional[List[float]] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        """Validate fields after initialization."""
        if self.type not in CATALYST_TYPES:
            raise ValueError(f"type must be one of {CATALYST_TYPES}, got {self.type}")
        for name in ("impact_score", "confidence_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")

    @property
    def natural_key(self) -> tuple:
        return (self.ticker, self.event_date)

    def embedding_text(self) -> str:
        """Text representation used for embeddings."""
        return " ".join([self.type, self.ticker, self.title, self.description or ""])

    def to_dict(self, include_embedding: bool = False) -> dict:
        """Convert to dictionary for JSON responses."""
        data = {
            "id": self.id,
            "type": self.type,
            "ticker": self.ticker,
            "title": self.title,
            "description": self.description,
            "event_date": self.event_date.isoformat(),
            "impact_score": self.impact_score,
            "confidence_score": self.confidence_score,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


# ---------------------------------------------------------------------------
# Prediction
# ---------------------------------------------------------------------------

@dataclass
class FeatureVector:
    """Inputs consumed by the predictor. Never persisted."""
    catalyst_type: str
    ticker: str
    days_until_event: int
    market_cap: Optional[float] = None
    sector: Optional[str] = None
    historical_volatility_30d: Optional[float] = None
    sentiment_delta_24h: Optional[float] = None
    debt_to_equity: Optional[float] = None
    sector_momentum: Optional[float] = None
    macro_rate_environment: Optional[float] = None
    pre_market_volume: Optional[float] = None
    option_flow_sentiment: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureVector":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SimilarEvent:
    """A historical catalyst resembling the one being predicted."""
    ticker: str
    event_date: str
    actual_movement: float
    similarity_score: float

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "event_date": self.event_date,
            "actual_movement": self.actual_movement,
            "similarity_score": self.similarity_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SimilarEvent":
        return cls(
            ticker=data["ticker"],
            event_date=data["event_date"],
            actual_movement=data["actual_movement"],
            similarity_score=data["similarity_score"],
        )


@dataclass
class PredictionResult:
    """Predictor output, serialized as the predict endpoint payload."""
    impact_prediction: float
    confidence_score: float
    lower_bound: float
    upper_bound: float
    risk_factors: List[str]
    similar_historical_events: List[SimilarEvent]
    catalyst_id: Optional[int] = None
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "impact_prediction": self.impact_prediction,
            "confidence_score": self.confidence_score,
            "price_movement_range": {
                "lower_bound": self.lower_bound,
                "upper_bound": self.upper_bound,
            },
            "risk_factors": list(self.risk_factors),
            "similar_historical_events": [e.to_dict() for e in self.similar_historical_events],
        }


@dataclass
class PredictionCacheEntry:
    """Append-only cache row; the newest row per catalyst decides freshness."""
    catalyst_id: int
    impact_prediction: float
    confidence_score: float
    price_range_lower: float
    price_range_upper: float
    risk_factors: List[str]
    similar_events: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    def is_fresh(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return now - self.created_at < timedelta(seconds=ttl_seconds)

    @classmethod
    def from_result(cls, catalyst_id: int, result: PredictionResult) -> "PredictionCacheEntry":
        return cls(
            catalyst_id=catalyst_id,
            impact_prediction=result.impact_prediction,
            confidence_score=result.confidence_score,
            price_range_lower=result.lower_bound,
            price_range_upper=result.upper_bound,
            risk_factors=list(result.risk_factors),
            similar_events=[e.to_dict() for e in result.similar_historical_events],
        )

    def to_result(self) -> PredictionResult:
        return PredictionResult(
            impact_prediction=self.impact_prediction,
            confidence_score=self.confidence_score,
            lower_bound=self.price_range_lower,
            upper_bound=self.price_range_upper,
            risk_factors=list(self.risk_factors),
            similar_historical_events=[SimilarEvent.from_dict(e) for e in self.similar_events],
            catalyst_id=self.catalyst_id,
            cached=True,
        )


@dataclass
class CompanyProfile:
    """Linked entity data consulted during feature extraction."""
    ticker: str
    name: Optional[str] = None
    market_cap: Optional[float] = None
    sector: Optional[str] = None
    debt_to_equity: Optional[float] = None
    pre_market_volume: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CompanyProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
