"""
Polygon.io Client

Financials listing (for upcoming/recent earnings) and ticker details.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Iterator, List, Optional

import requests

from integrations.http_client import RetryPolicy, build_session, decode_json, request_with_backoff

logger = logging.getLogger(__name__)


class PolygonClient:
    """Client for Polygon.io reference endpoints."""

    BASE_URL = "https://api.polygon.io"

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: int = 30
    ):
        self.api_key = api_key
        self.session = session or build_session()
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.timeout = timeout

    def _get(self, url: str, params: Optional[dict] = None) -> Optional[dict]:
        params = dict(params or {})
        params["apiKey"] = self.api_key
        response = request_with_backoff(
            self.session, "GET", url,
            policy=self.policy, sleep=self.sleep, timeout=self.timeout,
            params=params,
        )
        if response.status_code == 404:
            return None
        return decode_json(response, url)

    def iter_financials(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        page_size: int = 100
    ) -> Iterator[List[dict]]:
        """
        Yield pages of financial filings, following `next_url`.

        With start/end None, pages are ordered newest first.
        """
        params = {"limit": page_size, "include_sources": "true"}
        if start is not None and end is not None:
            params["filing_date.gte"] = start.strftime("%Y-%m-%d")
            params["filing_date.lte"] = end.strftime("%Y-%m-%d")
            params["order"] = "asc"
        else:
            params["order"] = "desc"

        url: Optional[str] = f"{self.BASE_URL}/vX/reference/financials"
        while url:
            data = self._get(url, params)
            if not data:
                return
            yield data.get("results", [])

            # next_url already carries the cursor and filters
            url = data.get("next_url")
            params = {}

    def get_ticker_details(self, ticker: str) -> Optional[dict]:
        """Company details (name, market_cap, sic_description) or None."""
        data = self._get(f"{self.BASE_URL}/v3/reference/tickers/{ticker}")
        if not data:
            return None
        return data.get("results")
