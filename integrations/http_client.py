"""
HTTP Client Helpers

Shared retry and rate-limit handling for every outbound call:
- Exponential backoff on network errors and 5xx
- Fixed sleep on HTTP 429, then the same request again
- 404 handed back to the caller (adapters widen their window on it)
- Other 4xx raised immediately
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from pipeline.errors import RateLimitedError, UpstreamFetchError

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff."""
    max_attempts: int = 4
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    rate_limit_sleep: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, settings: dict) -> "RetryPolicy":
        """Build from the `ingestion` config section."""
        return cls(
            max_attempts=settings.get("max_attempts", 4),
            base_delay=settings.get("base_delay_seconds", 1.0),
            factor=settings.get("backoff_factor", 2.0),
            max_delay=settings.get("max_delay_seconds", 30.0),
            rate_limit_sleep=settings.get("rate_limit_sleep_seconds", 60.0),
        )


def request_with_backoff(
    session: requests.Session,
    method: str,
    url: str,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout: float = 30,
    **kwargs
) -> requests.Response:
    """
    Issue a request with retries.

    Args:
        session: requests session (or a compatible mock)
        method: HTTP method
        url: Request URL
        policy: Retry policy
        sleep: Sleep function (injected by tests)
        timeout: Per-request timeout in seconds
        **kwargs: Passed to session.request (params, json, headers)

    Returns:
        Response with status < 400, or a 404 response

    Raises:
        RateLimitedError: 429 on every attempt
        UpstreamFetchError: Network error, 5xx after retries, or other 4xx
    """
    policy = policy or RetryPolicy()
    last_error: Optional[Exception] = None
    last_status: Optional[int] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            response = session.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            last_error = e
            logger.warning(f"Request error on {url} (attempt {attempt}/{policy.max_attempts}): {e}")
            if attempt < policy.max_attempts:
                sleep(policy.delay(attempt))
            continue

        status = response.status_code
        last_status = status

        if status == 429:
            logger.warning(
                f"Rate limited by {url} (attempt {attempt}/{policy.max_attempts}), "
                f"sleeping {policy.rate_limit_sleep}s"
            )
            if attempt < policy.max_attempts:
                sleep(policy.rate_limit_sleep)
            continue

        if status >= 500:
            logger.warning(f"Server error {status} from {url} (attempt {attempt}/{policy.max_attempts})")
            if attempt < policy.max_attempts:
                sleep(policy.delay(attempt))
            continue

        if status == 404 or status < 400:
            return response

        raise UpstreamFetchError(f"HTTP {status} from {url}", status_code=status, url=url)

    if last_status == 429:
        raise RateLimitedError(f"Still rate limited after {policy.max_attempts} attempts: {url}",
                               status_code=429, url=url)
    if last_error is not None and last_status is None:
        raise UpstreamFetchError(f"Request to {url} failed: {last_error}", url=url) from last_error
    raise UpstreamFetchError(f"HTTP {last_status} from {url} after {policy.max_attempts} attempts",
                             status_code=last_status, url=url)


def decode_json(response: requests.Response, url: str) -> dict:
    """
    Decode a JSON object body.

    Raises:
        UpstreamFetchError: Body is not JSON or not a JSON object
    """
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamFetchError(
            f"Invalid JSON from {url}: {e}", status_code=response.status_code, url=url
        ) from e
    if not isinstance(data, dict):
        raise UpstreamFetchError(
            f"Unexpected {type(data).__name__} body from {url}", status_code=response.status_code, url=url
        )
    return data


class RateLimiter:
    """Enforces a minimum interval between consecutive calls."""

    def __init__(
        self,
        min_interval: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        """Sleep if needed to respect the interval."""
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval:
                self._sleep(self.min_interval - elapsed)
        self._last_call = self._clock()


def build_session(user_agent: str = "CatalystPipeline/1.0") -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "User-Agent": user_agent,
        "Accept": "application/json"
    })
    return session
