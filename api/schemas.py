"""
API Schemas

Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# Request Models

class CatalystInput(BaseModel):
    """A catalyst submitted directly for scoring."""
    type: str = Field(description="regulatory | earnings | filing | rate-decision | macro")
    ticker: str
    title: str
    description: Optional[str] = None
    event_date: str = Field(description="ISO date or datetime")
    source_data: Optional[Dict[str, Any]] = None


class ProcessCatalystRequest(BaseModel):
    """Request to score and store one catalyst."""
    catalyst: CatalystInput


class FeatureInput(BaseModel):
    """Caller-supplied predictor features."""
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


class PredictRequest(BaseModel):
    """Predict for a stored catalyst or for explicit features."""
    catalyst_id: Optional[int] = None
    features: Optional[FeatureInput] = None


class BackfillRequest(BaseModel):
    """Optional limit on embedding batches."""
    max_batches: Optional[int] = Field(default=None, ge=1)


class IngestRequest(BaseModel):
    """Optional window override for an adapter run."""
    days: Optional[int] = Field(default=None, ge=1, description="Window length in days")


# Response Models

class EnvelopeResponse(BaseModel):
    """Shared response shape for batch endpoints."""
    success: bool
    processed: Optional[int] = None
    catalysts: Optional[int] = None
    error: Optional[str] = None
    message: Optional[str] = None


class ProcessCatalystResponse(BaseModel):
    """Stored catalyst plus outcome-history prediction."""
    success: bool
    catalyst: Dict[str, Any]
    created: bool
    predicted_impact: Optional[Dict[str, Any]] = None
    historical_data_points: int


class PriceMovementRange(BaseModel):
    lower_bound: float
    upper_bound: float


class SimilarEventResponse(BaseModel):
    ticker: str
    event_date: str
    actual_movement: float
    similarity_score: float


class PredictResponse(BaseModel):
    """Predicted price reaction."""
    impact_prediction: float
    confidence_score: float
    price_movement_range: PriceMovementRange
    risk_factors: List[str]
    similar_historical_events: List[SimilarEventResponse]


class SourceFreshnessResponse(BaseModel):
    source: str
    lastUpdate: Optional[str] = None
    recordCount: int
    newestRecord: Optional[str] = None
    isStale: bool
    staleDays: int
    warning: Optional[str] = None


class ExpiringKeyResponse(BaseModel):
    service_name: str
    expires_at: str


class OverallHealth(BaseModel):
    status: str
    messages: List[str]


class FreshnessResponse(BaseModel):
    """Per-source freshness and credential expiry."""
    success: bool
    timestamp: str
    dataFreshness: List[SourceFreshnessResponse]
    expiringApiKeys: List[ExpiringKeyResponse]
    overallHealth: OverallHealth


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
