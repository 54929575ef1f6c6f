"""
openFDA Client

Fetches drug adverse-event reports from the openFDA API.
openFDA answers 404 when a search matches nothing; that is returned as
None so the caller can widen its window.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

import requests

from integrations.http_client import RetryPolicy, build_session, decode_json, request_with_backoff

logger = logging.getLogger(__name__)


class OpenFDAClient:
    """Client for the openFDA drug event endpoint."""

    BASE_URL = "https://api.fda.gov/drug/event.json"
    MAX_LIMIT = 100

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: int = 30
    ):
        """
        Initialize openFDA client.

        Args:
            api_key: Optional key (raises the daily quota)
            session: HTTP session
            policy: Retry policy
            sleep: Sleep function
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.session = session or build_session()
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.timeout = timeout

    @staticmethod
    def _fda_date(value: datetime) -> str:
        return value.strftime("%Y%m%d")

    def search_serious_events(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0
    ) -> Optional[List[dict]]:
        """
        Search serious adverse events.

        Args:
            start: Window start; with end=None as well, returns most recent reports
            end: Window end
            limit: Page size (max 100)
            skip: Offset for pagination

        Returns:
            List of report dicts, or None if openFDA found nothing (404)
        """
        params = {"limit": min(limit, self.MAX_LIMIT)}
        if start is not None and end is not None:
            params["search"] = (
                f"receivedate:[{self._fda_date(start)} TO {self._fda_date(end)}] AND serious:1"
            )
        else:
            params["search"] = "serious:1"
            params["sort"] = "receivedate:desc"
        if skip:
            params["skip"] = skip
        if self.api_key:
            params["api_key"] = self.api_key

        response = request_with_backoff(
            self.session, "GET", self.BASE_URL,
            policy=self.policy, sleep=self.sleep, timeout=self.timeout,
            params=params,
        )
        if response.status_code == 404:
            logger.info(f"openFDA returned no results for {params['search']}")
            return None

        results = decode_json(response, self.BASE_URL).get("results", [])
        logger.debug(f"openFDA returned {len(results)} reports")
        return results
