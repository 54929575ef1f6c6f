"""
Earnings Adapters

- EarningsAdapter: Polygon.io financials listing plus one ticker-details
  call per record for name, market cap and sector
- StaticEarningsAdapter: fixed-date earnings calendar from a JSON file
"""

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from integrations.polygon_client import PolygonClient
from pipeline.errors import CatalystValidationError, UpstreamFetchError
from pipeline.ingestion.base import AdapterResult, SourceAdapter
from pipeline.models import DateRange, RawEvent
from utils.datetime_utils import parse_datetime

logger = logging.getLogger(__name__)


class EarningsAdapter(SourceAdapter):
    """Polygon.io earnings (service `polygon`, key required)."""

    source_name = "earnings"
    service_name = "polygon"

    def __init__(self, *args, client: Optional[PolygonClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    @property
    def client(self) -> PolygonClient:
        if self._client is None:
            cred = self.credential(required=True)
            self._client = PolygonClient(
                api_key=cred.api_key,
                session=self.session,
                policy=self.policy,
                sleep=self.sleep,
                timeout=self.timeout,
            )
        return self._client

    def default_window(self) -> DateRange:
        return DateRange.next_days(self.window_days)

    def widen(self, window: DateRange) -> DateRange:
        return DateRange(start=window.start, end=window.start + timedelta(days=self.fallback_window_days))

    def fetch_window(self, window: Optional[DateRange], result: AdapterResult) -> List[dict]:
        client = self.client
        listing: List[dict] = []

        for page in client.iter_financials(
            start=window.start if window else None,
            end=window.end if window else None,
        ):
            listing.extend(page)
            if len(listing) >= self.record_cap:
                break
            self.rate_limiter.wait()

        records = []
        for financial in listing[: self.record_cap]:
            tickers = financial.get("tickers") or []
            if not tickers:
                result.skipped += 1
                continue

            self.rate_limiter.wait()
            try:
                details = client.get_ticker_details(tickers[0]) or {}
            except UpstreamFetchError as e:
                result.skipped += 1
                logger.warning(f"[earnings] details lookup failed for {tickers[0]}: {e}")
                continue
            records.append({"financial": financial, "details": details})

        return records

    def to_raw_events(self, record: dict) -> List[RawEvent]:
        financial = record["financial"]
        details = record.get("details") or {}
        ticker = (financial.get("tickers") or [None])[0]
        event_date = financial.get("filing_date") or financial.get("end_date")
        if not ticker or not event_date:
            raise CatalystValidationError("earnings record without ticker or date")

        period = " ".join(
            str(p) for p in (financial.get("fiscal_period"), financial.get("fiscal_year")) if p
        )
        return [RawEvent(
            source=self.source_name,
            catalyst_type="earnings",
            event_date=event_date,
            ticker=ticker,
            external_id=f"{ticker}-{period}" if period else ticker,
            fields={
                "company_name": details.get("name") or financial.get("company_name"),
                "market_cap": details.get("market_cap"),
                "sector": details.get("sic_description"),
                "currency": details.get("currency_name"),
                "fiscal_period": period or None,
                "fiscal_date_ending": financial.get("end_date"),
            },
        )]


class StaticEarningsAdapter(SourceAdapter):
    """
    Earnings calendar read from a JSON file.

    Format:
        {"earnings": [{"ticker": "AAPL", "company_name": "Apple Inc.",
                       "report_date": "2025-01-30", "report_time": "after_close",
                       "eps_estimate": 2.35, "market_cap": 2.8e12}]}
    """

    source_name = "earnings"
    service_name = "static"

    def __init__(self, path: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.path = Path(path)

    def default_window(self) -> DateRange:
        return DateRange.next_days(self.window_days)

    def widen(self, window: DateRange) -> DateRange:
        return DateRange(start=window.start, end=window.start + timedelta(days=self.fallback_window_days))

    def _load(self) -> List[dict]:
        if not self.path.exists():
            raise UpstreamFetchError(f"Earnings calendar not found: {self.path}")
        with open(self.path, 'r', encoding='utf-8') as f:
            return json.load(f).get("earnings", [])

    def fetch_window(self, window: Optional[DateRange], result: AdapterResult) -> List[dict]:
        entries = self._load()
        if window is None:
            entries = sorted(entries, key=lambda e: e.get("report_date", ""), reverse=True)
            return entries[: self.record_cap]

        selected = []
        for entry in entries:
            report_date = parse_datetime(entry.get("report_date"))
            if report_date is not None and window.start.date() <= report_date.date() <= window.end.date():
                selected.append(entry)
        return selected[: self.record_cap]

    def to_raw_events(self, record: dict) -> List[RawEvent]:
        ticker = record.get("ticker")
        if not ticker or not record.get("report_date"):
            raise CatalystValidationError("calendar entry without ticker or report_date")
        return [RawEvent(
            source=self.source_name,
            catalyst_type="earnings",
            event_date=record["report_date"],
            ticker=ticker,
            external_id=f"{ticker}-{record['report_date']}",
            fields={
                "company_name": record.get("company_name"),
                "market_cap": record.get("market_cap"),
                "sector": record.get("sector"),
                "eps_estimate": record.get("eps_estimate"),
                "report_time": record.get("report_time"),
                "fiscal_period": record.get("fiscal_period"),
            },
        )]
