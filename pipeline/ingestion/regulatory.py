"""
Regulatory Adapter

Serious drug adverse-event reports from openFDA. Each drug named in a
report becomes one RawEvent whose raw identifier is the upper-cased
medicinal product name; ticker resolution happens in the normalizer.

openFDA lags by weeks, so an empty 30-day window is normal and the
90-day / most-recent fallbacks are part of the regular path.
"""

import logging
from typing import List, Optional

from integrations.openfda_client import OpenFDAClient
from pipeline.errors import CatalystValidationError
from pipeline.ingestion.base import AdapterResult, SourceAdapter
from pipeline.models import DateRange, RawEvent

logger = logging.getLogger(__name__)


class RegulatoryAdapter(SourceAdapter):
    """openFDA drug adverse events (service `fda`, key optional)."""

    source_name = "regulatory"
    service_name = "fda"

    def __init__(self, *args, client: Optional[OpenFDAClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    @property
    def client(self) -> OpenFDAClient:
        if self._client is None:
            cred = self.credential(required=False)
            self._client = OpenFDAClient(
                api_key=cred.api_key if cred else None,
                session=self.session,
                policy=self.policy,
                sleep=self.sleep,
                timeout=self.timeout,
            )
        return self._client

    def fetch_window(self, window: Optional[DateRange], result: AdapterResult) -> List[dict]:
        records: List[dict] = []
        page_size = min(self.record_cap, OpenFDAClient.MAX_LIMIT)

        while len(records) < self.record_cap:
            self.rate_limiter.wait()
            page = self.client.search_serious_events(
                start=window.start if window else None,
                end=window.end if window else None,
                limit=min(page_size, self.record_cap - len(records)),
                skip=len(records),
            )
            if not page:
                break
            records.extend(page)
            if len(page) < page_size:
                break

        return records

    def to_raw_events(self, record: dict) -> List[RawEvent]:
        received = record.get("receivedate")
        if not received:
            raise CatalystValidationError(f"report {record.get('safetyreportid')} has no receivedate")

        drugs = (record.get("patient") or {}).get("drug") or []
        events = []
        for drug in drugs:
            name = (drug.get("medicinalproduct") or "").strip()
            if not name:
                continue
            events.append(RawEvent(
                source=self.source_name,
                catalyst_type="regulatory",
                event_date=received,
                raw_identifier=name.upper(),
                external_id=record.get("safetyreportid"),
                fields={
                    "report_id": record.get("safetyreportid"),
                    "drug_name": name,
                    "indication": drug.get("drugindication"),
                    "serious": str(record.get("serious")) == "1",
                },
            ))
        return events
