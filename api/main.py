"""
FastAPI Application

Main entry point for the Catalyst Pipeline API.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from api.endpoints import API_VERSION, router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Catalyst Pipeline API starting up...")
    yield
    logger.info("API shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Catalyst Pipeline API",
    description="""
    Market catalyst ingestion, scoring and prediction.

    ## Key Endpoints

    - `POST /catalysts/process` - Score and store one catalyst
    - `POST /predict` - Predict price reaction (by catalyst id or features)
    - `POST /embeddings/backfill` - Generate missing embeddings
    - `GET /freshness` - Data freshness and API key expiry
    - `POST /ingest/{source}` - Run one source adapter (regulatory, filings, earnings)
    """,
    version=API_VERSION,
    lifespan=lifespan
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies get the standard error envelope."""
    logger.warning(f"Malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "message": str(exc.errors())}
    )


# Include API routes
app.include_router(router, prefix="/api/v1")

# Also mount at root for convenience
app.include_router(router)


@app.get("/")
async def root():
    """API root endpoint."""
    return {
        "name": "Catalyst Pipeline API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health"
    }


# For running directly with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True
    )
