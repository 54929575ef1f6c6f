"""
Freshness Monitor

Health sweep over per-source data recency and credential expiry.

Each source has its own cadence: openFDA lags by months, SEC filings
arrive continuously, earnings are refreshed by a daily job. A source is
stale when its newest record (event date or write time, per config) is
older than that source's `max_age_hours`.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from pipeline.config import PipelineConfig, get_config
from pipeline.credentials import CredentialStore
from utils.datetime_utils import days_since, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SourceFreshness:
    source: str
    record_count: int
    newest_record: Optional[datetime]
    last_update: Optional[datetime]
    is_stale: bool
    stale_days: int
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "source": self.source,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
            "recordCount": self.record_count,
            "newestRecord": self.newest_record.isoformat() if self.newest_record else None,
            "isStale": self.is_stale,
            "staleDays": self.stale_days,
        }
        if self.warning:
            data["warning"] = self.warning
        return data


@dataclass
class FreshnessReport:
    timestamp: datetime
    sources: List[SourceFreshness] = field(default_factory=list)
    expiring_credentials: List[dict] = field(default_factory=list)

    @property
    def messages(self) -> List[str]:
        messages = [s.warning for s in self.sources if s.warning]
        messages.extend(
            f"API key for {c['service_name']} expires soon" for c in self.expiring_credentials
        )
        return messages

    @property
    def status(self) -> str:
        if any(s.is_stale for s in self.sources) or self.expiring_credentials:
            return "warning"
        return "healthy"

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "dataFreshness": [s.to_dict() for s in self.sources],
            "expiringApiKeys": self.expiring_credentials,
            "overallHealth": {"status": self.status, "messages": self.messages},
        }


class FreshnessMonitor:
    """Checks every configured source and the credential store."""

    def __init__(
        self,
        store,
        credentials: Optional[CredentialStore] = None,
        config: Optional[PipelineConfig] = None,
        now_fn: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.credentials = credentials
        self.config = config or get_config()
        self.settings = self.config.section("freshness")
        self.now_fn = now_fn

    def check(self) -> FreshnessReport:
        now = self.now_fn()
        report = FreshnessReport(timestamp=now)

        for rule in self.settings.get("sources", {}).values():
            status = self._check_source(rule, now)
            if status is not None:
                report.sources.append(status)

        report.expiring_credentials = self._expiring_credentials(now)

        logger.info(f"Freshness check: {report.status} ({len(report.messages)} messages)")
        return report

    def _check_source(self, rule: dict, now: datetime) -> Optional[SourceFreshness]:
        label = rule["label"]
        measure = rule.get("measure", "event_date")

        count, newest_event = self.store.newest_for_type(rule["catalyst_type"], "event_date")
        if count == 0:
            logger.debug(f"No {label} records yet")
            return None
        _, last_write = self.store.newest_for_type(rule["catalyst_type"], "created_at")

        reference = last_write if measure == "created_at" else newest_event
        age_hours = (now - reference).total_seconds() / 3600
        is_stale = age_hours > rule["max_age_hours"]
        stale_days = days_since(reference, now)

        warning = None
        if is_stale:
            if measure == "created_at":
                warning = f"{label} data hasn't been updated in {math.floor(age_hours)} hours."
            else:
                warning = f"{label} data appears stale. Newest record is {stale_days} days old."

        return SourceFreshness(
            source=label,
            record_count=count,
            newest_record=newest_event,
            last_update=last_write,
            is_stale=is_stale,
            stale_days=stale_days,
            warning=warning,
        )

    def _expiring_credentials(self, now: datetime) -> List[dict]:
        if self.credentials is None:
            return []
        window = self.settings.get("credential_expiry_days", 30)
        return [
            {"service_name": c.service_name, "expires_at": c.expires_at.isoformat()}
            for c in self.credentials.all()
            if c.expires_within(window, now)
        ]
