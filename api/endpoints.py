"""
API Endpoints

Route handlers for the FastAPI application. One stateless endpoint per
pipeline stage; errors come back in the `{success: false, error}` envelope.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from api.schemas import (
    BackfillRequest, EnvelopeResponse, FreshnessResponse, HealthResponse,
    IngestRequest, PredictRequest, PredictResponse,
    ProcessCatalystRequest, ProcessCatalystResponse,
)
from cli.commands import PipelineOrchestrator, get_orchestrator
from pipeline.errors import (
    CatalystNotFoundError, CatalystPipelineError, CatalystValidationError,
)
from pipeline.ingestion import ADAPTERS
from pipeline.models import DateRange, FeatureVector
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "1.0.0"


def get_pipeline() -> PipelineOrchestrator:
    """Dependency returning the shared orchestrator."""
    return get_orchestrator()


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


# Health check
@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check system health."""
    logger.debug("Health check requested")
    return HealthResponse(
        status="healthy",
        timestamp=utc_now(),
        version=API_VERSION
    )


@router.post("/catalysts/process", response_model=ProcessCatalystResponse, tags=["Catalysts"])
def process_catalyst(
    request: ProcessCatalystRequest,
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Score and store one catalyst (first write wins on ticker + event date)."""
    submission = request.catalyst.model_dump()
    logger.info(f"Processing catalyst {submission['ticker']} ({submission['type']})")

    try:
        result = pipeline.process_submission(submission)
    except CatalystValidationError as e:
        logger.warning(f"Rejected catalyst: {e}")
        return error_response(400, str(e))
    except CatalystPipelineError as e:
        logger.error(f"Catalyst processing failed: {e}", exc_info=True)
        return error_response(500, str(e))

    return {"success": True, **result}


@router.post("/predict", response_model=PredictResponse, tags=["Predictions"])
def predict(
    request: PredictRequest,
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Predict the price reaction for a stored catalyst or explicit features."""
    if request.catalyst_id is None and request.features is None:
        return error_response(400, "Either catalyst_id or features is required")

    try:
        if request.catalyst_id is not None:
            logger.info(f"Prediction requested for catalyst {request.catalyst_id}")
            result = pipeline.predict(catalyst_id=request.catalyst_id)
        else:
            features = FeatureVector.from_dict(request.features.model_dump())
            logger.info(f"Prediction requested for features of {features.ticker}")
            result = pipeline.predict(features=features)
    except CatalystNotFoundError as e:
        logger.warning(str(e))
        return error_response(404, str(e))
    except CatalystPipelineError as e:
        logger.error(f"Prediction failed: {e}", exc_info=True)
        return error_response(500, str(e))

    return result.to_dict()


@router.post("/embeddings/backfill", response_model=EnvelopeResponse, tags=["Embeddings"])
def backfill_embeddings(
    request: Optional[BackfillRequest] = None,
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Generate embeddings for catalysts that have none."""
    max_batches = request.max_batches if request else None
    try:
        return pipeline.backfill(max_batches=max_batches)
    except CatalystPipelineError as e:
        logger.error(f"Embedding backfill failed: {e}", exc_info=True)
        return error_response(500, str(e))


@router.get("/freshness", response_model=FreshnessResponse, tags=["Monitoring"])
def data_freshness(pipeline: PipelineOrchestrator = Depends(get_pipeline)):
    """Per-source data freshness and expiring API keys."""
    try:
        return pipeline.freshness()
    except CatalystPipelineError as e:
        logger.error(f"Freshness check failed: {e}", exc_info=True)
        return error_response(500, str(e))


@router.post("/ingest/{source}", response_model=EnvelopeResponse, tags=["Ingestion"])
def ingest_source(
    source: str,
    request: Optional[IngestRequest] = None,
    pipeline: PipelineOrchestrator = Depends(get_pipeline)
):
    """Run one source adapter and store new catalysts."""
    if source not in ADAPTERS:
        return error_response(404, f"Unknown source: {source}")

    window = None
    if request and request.days:
        if source == "earnings":
            window = DateRange.next_days(request.days)
        else:
            window = DateRange.last_days(request.days)

    logger.info(f"Ingest requested for {source}")
    try:
        result = pipeline.run_adapter(source, window=window)
    except CatalystPipelineError as e:
        logger.error(f"Ingest of {source} failed: {e}", exc_info=True)
        return error_response(500, str(e))

    return {
        "success": result["success"],
        "processed": result["processed"],
        "catalysts": result["catalysts"],
        "message": result["message"],
    }
