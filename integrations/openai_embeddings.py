"""
OpenAI Embeddings Client

Requests text embeddings with an explicit output dimensionality.
"""

import logging
import time
from typing import Callable, List, Optional

import requests

from integrations.http_client import RetryPolicy, build_session, decode_json, request_with_backoff

logger = logging.getLogger(__name__)


class OpenAIEmbeddingClient:
    """Minimal client for POST /v1/embeddings."""

    BASE_URL = "https://api.openai.com/v1/embeddings"

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 384,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: int = 30
    ):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.session = session or build_session()
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.timeout = timeout

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts.

        Returns:
            One vector per input, in input order

        Raises:
            UpstreamFetchError: Request failed
        """
        response = request_with_backoff(
            self.session, "POST", self.BASE_URL,
            policy=self.policy, sleep=self.sleep, timeout=self.timeout,
            json={"input": texts, "model": self.model, "dimensions": self.dimensions},
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )
        data = decode_json(response, self.BASE_URL).get("data", [])
        data.sort(key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in data]
