"""
SEC-API.io Client

Full-text query API for EDGAR filings.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

import requests

from integrations.http_client import RetryPolicy, build_session, decode_json, request_with_backoff

logger = logging.getLogger(__name__)


class SecApiClient:
    """Client for the SEC-API.io query endpoint."""

    BASE_URL = "https://api.sec-api.io"

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

    @staticmethod
    def build_query(
        form_type: str,
        start: Optional[datetime],
        end: Optional[datetime],
        offset: int,
        size: int
    ) -> dict:
        """Query body for one form type; no dates means most recent filings."""
        query = f'formType:"{form_type}"'
        if start is not None and end is not None:
            query += f" AND filedAt:[{start.strftime('%Y-%m-%d')} TO {end.strftime('%Y-%m-%d')}]"
        return {
            "query": {"query_string": {"query": query}},
            "from": str(offset),
            "size": str(size),
            "sort": [{"filedAt": {"order": "desc"}}],
        }

    def query_filings(
        self,
        form_type: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        size: int = 50
    ) -> dict:
        """
        Fetch one page of filings.

        Returns:
            {"filings": [...], "total": int}; empty on 404
        """
        response = request_with_backoff(
            self.session, "POST", self.BASE_URL,
            policy=self.policy, sleep=self.sleep, timeout=self.timeout,
            json=self.build_query(form_type, start, end, offset, size),
            headers={"Authorization": self.api_key, "Content-Type": "application/json"},
        )
        if response.status_code == 404:
            return {"filings": [], "total": 0}

        data = decode_json(response, self.BASE_URL)
        total = data.get("total", {})
        if isinstance(total, dict):
            total = total.get("value", 0)
        return {"filings": data.get("filings", []), "total": total or 0}
