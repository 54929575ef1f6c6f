"""
Source Adapter Base

Shared fetch loop for every upstream source:
1. Fetch the requested window
2. On empty/404, retry with the wider fallback window
3. Still empty: fetch the most recent N records regardless of date

A window that fails after all retries is logged and counted; the run
moves on to the next fallback step. Adapters only produce RawEvents and
never write to the store.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import requests

from integrations.http_client import RateLimiter, RetryPolicy, build_session
from pipeline.config import PipelineConfig, get_config
from pipeline.credentials import CredentialStore
from pipeline.errors import CatalystValidationError, CredentialMissingError, UpstreamFetchError
from pipeline.models import Credential, DateRange, RawEvent

logger = logging.getLogger(__name__)


@dataclass
class AdapterResult:
    """Raw events from one adapter run plus counters."""
    source: str
    events: List[RawEvent] = field(default_factory=list)
    fetched: int = 0
    skipped: int = 0
    failed_windows: int = 0
    window_used: Optional[str] = None  # primary | fallback | recent

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "events": len(self.events),
            "fetched": self.fetched,
            "skipped": self.skipped,
            "failed_windows": self.failed_windows,
            "window_used": self.window_used,
        }


class SourceAdapter(ABC):
    """
    Base class for source adapters.

    Subclasses implement `fetch_window()` (one window, or None for "most
    recent") and `to_raw_events()` (one upstream record).
    """

    source_name: str = ""
    service_name: str = ""

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        config: Optional[PipelineConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize adapter.

        Args:
            credentials: Credential store for the upstream service
            config: Pipeline configuration
            session: HTTP session (mocked in tests)
            sleep: Sleep function used for backoff and inter-call delays
        """
        self.config = config or get_config()
        self.credentials = credentials
        self.session = session or build_session()
        self.sleep = sleep

        ingestion = self.config.section("ingestion")
        self.settings = ingestion.get(self.source_name, {})
        self.policy = RetryPolicy.from_settings(ingestion)
        self.timeout = ingestion.get("timeout_seconds", 30)
        self.record_cap = self.settings.get("record_cap", 100)
        self.window_days = self.settings.get("window_days", 30)
        self.fallback_window_days = self.settings.get("fallback_window_days", 90)
        self.rate_limiter = RateLimiter(self.settings.get("call_delay_seconds", 0.0), sleep=sleep)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def default_window(self) -> DateRange:
        return DateRange.last_days(self.window_days)

    def widen(self, window: DateRange) -> DateRange:
        return window.widened(self.fallback_window_days)

    @abstractmethod
    def fetch_window(self, window: Optional[DateRange], result: AdapterResult) -> List[Any]:
        """Fetch upstream records for a window (None = most recent N)."""

    @abstractmethod
    def to_raw_events(self, record: Any) -> List[RawEvent]:
        """Convert one upstream record to RawEvents. Raise CatalystValidationError to skip it."""

    # ------------------------------------------------------------------
    # Fetch loop
    # ------------------------------------------------------------------

    def credential(self, required: bool = True) -> Optional[Credential]:
        """Look up this adapter's credential."""
        cred = self.credentials.lookup(self.service_name) if self.credentials else None
        if cred is None and required:
            raise CredentialMissingError(self.service_name)
        return cred

    def fetch(self, window: Optional[DateRange] = None) -> AdapterResult:
        """
        Run the adapter.

        Args:
            window: Date window; defaults to the configured window

        Returns:
            AdapterResult with raw events and counters
        """
        window = window or self.default_window()
        result = AdapterResult(source=self.source_name)

        logger.info(f"[{self.source_name}] fetching {window.start:%Y-%m-%d} to {window.end:%Y-%m-%d}")
        records = self._fetch_with_fallback(window, result)
        result.fetched = len(records)

        for record in records:
            try:
                result.events.extend(self.to_raw_events(record))
            except CatalystValidationError as e:
                result.skipped += 1
                logger.debug(f"[{self.source_name}] skipped record: {e}")

        logger.info(
            f"[{self.source_name}] {result.fetched} records -> {len(result.events)} raw events "
            f"({result.skipped} skipped, {result.failed_windows} failed windows, "
            f"window={result.window_used})"
        )
        return result

    def _fetch_with_fallback(self, window: DateRange, result: AdapterResult) -> List[Any]:
        steps = [
            ("primary", window),
            ("fallback", self.widen(window)),
            ("recent", None),
        ]
        for label, step_window in steps:
            try:
                records = self.fetch_window(step_window, result)
            except UpstreamFetchError as e:
                result.failed_windows += 1
                logger.error(f"[{self.source_name}] {label} window failed: {e}")
                continue

            if records:
                result.window_used = label
                return records[: self.max_records()]

            logger.info(f"[{self.source_name}] no records in {label} window")

        return []

    def max_records(self) -> int:
        return self.record_cap
