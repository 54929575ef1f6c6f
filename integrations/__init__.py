"""
Integrations Module

External service clients:
- openFDA drug adverse events
- SEC-API.io filings
- Polygon.io financials and ticker details
- OpenAI embeddings
- Shared retry / rate-limit helpers
"""

from .http_client import RetryPolicy, RateLimiter, request_with_backoff, decode_json, build_session
from .openfda_client import OpenFDAClient
from .sec_api_client import SecApiClient
from .polygon_client import PolygonClient
from .openai_embeddings import OpenAIEmbeddingClient

__all__ = [
    "RetryPolicy",
    "RateLimiter",
    "request_with_backoff",
    "decode_json",
    "build_session",
    "OpenFDAClient",
    "SecApiClient",
    "PolygonClient",
    "OpenAIEmbeddingClient"
]
