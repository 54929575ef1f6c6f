"""
Filings Adapter

Recent SEC filings from SEC-API.io, one query per important form type.
Filings without a ticker (or with "n/a") are dropped.
"""

import logging
from typing import List, Optional

from integrations.sec_api_client import SecApiClient
from pipeline.errors import CatalystValidationError, UpstreamFetchError
from pipeline.ingestion.base import AdapterResult, SourceAdapter
from pipeline.models import DateRange, RawEvent

logger = logging.getLogger(__name__)


# 8-K items that raise a filing's impact
HIGH_IMPACT_ITEMS = [
    "Item 1.01",  # Entry into Material Agreement
    "Item 1.02",  # Termination of Material Agreement
    "Item 2.01",  # Completion of Acquisition
    "Item 2.04",  # Triggering Events
    "Item 2.05",  # Exit or Disposal Costs
    "Item 2.06",  # Material Impairments
    "Item 5.02",  # Departure/Appointment of Officers
    "Item 7.01",  # Regulation FD Disclosure
    "Item 8.01",  # Other Events
]

DEFAULT_FORM_TYPES = ["8-K", "10-K", "10-Q", "S-1", "S-3", "S-8", "DEF 14A"]
PAGE_SIZE = 50


def find_high_impact_item(description: Optional[str]) -> Optional[str]:
    if not description:
        return None
    for item in HIGH_IMPACT_ITEMS:
        if item in description:
            return item
    return None


class FilingsAdapter(SourceAdapter):
    """SEC-API.io filings (service `sec_api`, key required)."""

    source_name = "filings"
    service_name = "sec_api"

    def __init__(self, *args, client: Optional[SecApiClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client
        self.form_types = self.settings.get("form_types", DEFAULT_FORM_TYPES)

    @property
    def client(self) -> SecApiClient:
        if self._client is None:
            cred = self.credential(required=True)
            self._client = SecApiClient(
                api_key=cred.api_key,
                session=self.session,
                policy=self.policy,
                sleep=self.sleep,
                timeout=self.timeout,
            )
        return self._client

    def max_records(self) -> int:
        # the cap applies per form type
        return self.record_cap * len(self.form_types)

    def fetch_window(self, window: Optional[DateRange], result: AdapterResult) -> List[dict]:
        client = self.client
        records: List[dict] = []
        failures = 0

        for form_type in self.form_types:
            try:
                records.extend(self._fetch_form(client, form_type, window))
            except UpstreamFetchError as e:
                failures += 1
                logger.error(f"[filings] {form_type} query failed: {e}")

        if failures and failures == len(self.form_types):
            raise UpstreamFetchError(f"All {failures} form-type queries failed")
        result.failed_windows += failures
        return records

    def _fetch_form(self, client: SecApiClient, form_type: str, window: Optional[DateRange]) -> List[dict]:
        collected: List[dict] = []
        offset = 0
        while len(collected) < self.record_cap:
            self.rate_limiter.wait()
            page = client.query_filings(
                form_type,
                start=window.start if window else None,
                end=window.end if window else None,
                offset=offset,
                size=min(PAGE_SIZE, self.record_cap - len(collected)),
            )
            filings = page["filings"]
            if not filings:
                break
            for filing in filings:
                filing.setdefault("formType", form_type)
            collected.extend(filings)
            offset += len(filings)
            if offset >= page["total"]:
                break

        logger.debug(f"[filings] {len(collected)} {form_type} filings")
        return collected

    def to_raw_events(self, record: dict) -> List[RawEvent]:
        ticker = (record.get("ticker") or "").strip()
        if not ticker or ticker.lower() == "n/a":
            raise CatalystValidationError(f"filing {record.get('accessionNo')} has no ticker")

        description = record.get("description")
        form_type = record.get("formType")
        return [RawEvent(
            source=self.source_name,
            catalyst_type="filing",
            event_date=record.get("filedAt"),
            ticker=ticker.upper(),
            external_id=record.get("accessionNo"),
            summary=description,
            fields={
                "form_type": form_type,
                "accession_no": record.get("accessionNo"),
                "cik": record.get("cik"),
                "company_name": record.get("companyName"),
                "filing_url": record.get("linkToFilingDetails"),
                "viewer_url": record.get("viewerUrl"),
                "filed_at": record.get("filedAt"),
                "high_impact_item": find_high_impact_item(description) if form_type == "8-K" else None,
            },
        )]
