"""
Catalyst Normalizer

Converts RawEvents from the source adapters into canonical CatalystDrafts.
Handles entity resolution, templated titles/descriptions, event date
validation and the damped related-ticker fan-out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from pipeline.config import PipelineConfig, get_config
from pipeline.entity_resolver import EntityResolver
from pipeline.errors import CatalystValidationError, EntityResolutionMiss
from pipeline.models import (
    CATALYST_TYPES,
    CatalystDraft,
    CatalystMetadata,
    EarningsMetadata,
    EntityMapping,
    FilingMetadata,
    MacroMetadata,
    RateDecisionMetadata,
    RawEvent,
    RegulatoryMetadata,
)
from utils.datetime_utils import parse_datetime

logger = logging.getLogger(__name__)


FILING_TEMPLATES = {
    "8-K": ("{ticker} Files Form 8-K", "Current report filing. {summary}"),
    "10-K": (
        "{ticker} Annual Report (10-K)",
        "Annual report filing containing comprehensive overview of the company's business.",
    ),
    "10-Q": ("{ticker} Quarterly Report (10-Q)", "Quarterly report with unaudited financial statements."),
    "S-1": ("{ticker} IPO Registration (S-1)", "Initial public offering registration statement."),
    "DEF 14A": ("{ticker} Proxy Statement", "Definitive proxy statement for shareholder meeting."),
}

GENERIC_DESCRIPTIONS = {
    "regulatory": (
        "FDA regulatory event for {ticker}. This could significantly impact the stock "
        "price based on the decision outcome."
    ),
    "earnings": (
        "Quarterly earnings report for {ticker}. Market expectations and guidance will "
        "drive price movement."
    ),
    "rate-decision": (
        "Federal Reserve interest rate decision. This macro event typically impacts all "
        "sectors, with particular sensitivity in financials and tech."
    ),
    "macro": "Macroeconomic data release that may impact {ticker} and broader market sentiment.",
}


@dataclass
class NormalizeResult:
    """Drafts from one batch plus per-record skip counters."""
    drafts: List[CatalystDraft] = field(default_factory=list)
    unresolved: int = 0
    invalid: int = 0
    duplicates: int = 0

    @property
    def skipped(self) -> int:
        return self.unresolved + self.invalid + self.duplicates


def generic_description(catalyst_type: str, ticker: str, title: str) -> str:
    """Fallback description when a submission carries none."""
    template = GENERIC_DESCRIPTIONS.get(catalyst_type)
    if template is None:
        return title
    return template.format(ticker=ticker)


class CatalystNormalizer:
    """
    Normalizes raw events into catalyst drafts.

    `normalize()` handles one event; `normalize_batch()` additionally
    collapses duplicate (ticker, raw identifier) pairs within the batch.
    """

    def __init__(
        self,
        resolver: Optional[EntityResolver] = None,
        scorer=None,
        config: Optional[PipelineConfig] = None
    ):
        """
        Initialize normalizer.

        Args:
            resolver: Entity resolver for raw identifiers
            scorer: CatalystScorer, consulted for the fan-out threshold
            config: Pipeline configuration
        """
        self.config = config or get_config()
        self.resolver = resolver or EntityResolver()
        self.scorer = scorer
        settings = self.config.section("normalizer")
        self.related_weight = settings["related_weight"]
        self.max_related = settings["max_related"]
        self.related_min_impact = settings["related_min_impact"]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def normalize_batch(self, events: Iterable[RawEvent]) -> NormalizeResult:
        result = NormalizeResult()
        seen: Set[Tuple[str, str]] = set()

        for event in events:
            try:
                drafts = self.normalize(event)
            except EntityResolutionMiss as e:
                logger.debug(str(e))
                result.unresolved += 1
                continue
            except CatalystValidationError as e:
                logger.info(f"Dropping {event.source} record {event.external_id}: {e}")
                result.invalid += 1
                continue

            identity = (event.raw_identifier or event.external_id or "").upper()
            for draft in drafts:
                key = (draft.ticker, identity or draft.event_date.isoformat())
                if key in seen:
                    result.duplicates += 1
                    continue
                seen.add(key)
                result.drafts.append(draft)

        logger.info(
            f"Normalized {len(result.drafts)} drafts "
            f"({result.unresolved} unresolved, {result.invalid} invalid, {result.duplicates} duplicate)"
        )
        return result

    def normalize(self, event: RawEvent) -> List[CatalystDraft]:
        """
        Normalize one raw event.

        Args:
            event: Raw upstream record

        Returns:
            Primary draft followed by up to `max_related` related drafts

        Raises:
            EntityResolutionMiss: No ticker and no mapping for the raw identifier
            CatalystValidationError: Unknown type or unparseable event date
        """
        if event.catalyst_type not in CATALYST_TYPES:
            raise CatalystValidationError(f"unknown catalyst type {event.catalyst_type!r}")

        event_date = self._parse_event_date(event.event_date)

        mapping: Optional[EntityMapping] = None
        ticker = (event.ticker or "").strip().upper()
        if event.raw_identifier and not ticker:
            mapping = self.resolver.resolve(event.raw_identifier)
            ticker = mapping.primary_ticker
        if not ticker or ticker == "N/A":
            raise CatalystValidationError("missing ticker")

        builder = {
            "regulatory": self._regulatory,
            "filing": self._filing,
            "earnings": self._earnings,
        }.get(event.catalyst_type, self._generic)
        primary = builder(event, ticker, event_date, mapping)

        drafts = [primary]
        if mapping and mapping.related_tickers and self._fans_out(primary):
            drafts.extend(self._related(primary, mapping))
        return drafts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_event_date(value) -> datetime:
        parsed = parse_datetime(value)
        if parsed is None:
            raise CatalystValidationError(f"unparseable event date {value!r}")
        return parsed

    def _fans_out(self, primary: CatalystDraft) -> bool:
        if self.scorer is None:
            return True
        base = self.scorer.base_impact(primary.type, primary.metadata) * primary.impact_weight
        return base >= self.related_min_impact

    def _related(self, primary: CatalystDraft, mapping: EntityMapping) -> List[CatalystDraft]:
        drafts = []
        related = [t for t in mapping.related_tickers if t != primary.ticker]
        for ticker in related[: self.max_related]:
            metadata = primary.metadata.with_updates(
                relationship="related",
                primary_ticker=primary.ticker,
                market_cap=None,
                sector=None,
            )
            drafts.append(CatalystDraft(
                type=primary.type,
                ticker=ticker,
                title=f"Related: {primary.title}",
                description=(
                    f"{primary.description} Related to {primary.ticker}"
                    f"{' (' + mapping.category + ')' if mapping.category else ''}."
                ),
                event_date=primary.event_date,
                metadata=metadata,
                impact_weight=self.related_weight,
            ))
        return drafts

    def _regulatory(
        self,
        event: RawEvent,
        ticker: str,
        event_date: datetime,
        mapping: Optional[EntityMapping]
    ) -> CatalystDraft:
        f = event.fields
        drug = f.get("drug_name") or event.raw_identifier or ticker
        drug_class = mapping.category if mapping else f.get("drug_class")
        manufacturer = (mapping.issuer if mapping else None) or f.get("manufacturer")
        indication = f.get("indication")

        title = event.title or f"FDA Adverse Event Report: {drug}"
        description = event.summary or (
            f"Serious adverse event reported for {drug} ({drug_class or 'Drug class unknown'}). "
            f"Indication: {indication or 'Not specified'}. "
            f"Manufactured by {manufacturer or 'unknown manufacturer'}."
        )

        metadata = RegulatoryMetadata(
            report_id=f.get("report_id") or event.external_id,
            drug_name=drug,
            drug_class=drug_class,
            indication=indication,
            serious=f.get("serious"),
            manufacturer=manufacturer,
            related_tickers=list(mapping.related_tickers) if mapping else [],
            relationship="primary",
            source=event.source,
        )
        return CatalystDraft("regulatory", ticker, title, description, event_date, metadata)

    def _filing(
        self,
        event: RawEvent,
        ticker: str,
        event_date: datetime,
        mapping: Optional[EntityMapping]
    ) -> CatalystDraft:
        f = event.fields
        form_type = f.get("form_type") or ""
        summary = event.summary or ""

        if form_type in FILING_TEMPLATES:
            title_t, desc_t = FILING_TEMPLATES[form_type]
            title = title_t.format(ticker=ticker)
            description = desc_t.format(summary=summary or "Material event or corporate change.")
        else:
            title = f"{ticker} Files Form {form_type}"
            description = summary or f"SEC filing of form {form_type}."

        metadata = FilingMetadata(
            form_type=form_type,
            accession_no=f.get("accession_no") or event.external_id,
            cik=f.get("cik"),
            company_name=f.get("company_name"),
            filing_url=f.get("filing_url"),
            viewer_url=f.get("viewer_url"),
            filed_at=f.get("filed_at"),
            high_impact_item=f.get("high_impact_item"),
            relationship="primary",
            source=event.source,
        )
        return CatalystDraft("filing", ticker, event.title or title, description, event_date, metadata)

    def _earnings(
        self,
        event: RawEvent,
        ticker: str,
        event_date: datetime,
        mapping: Optional[EntityMapping]
    ) -> CatalystDraft:
        f = event.fields
        name = f.get("company_name") or ticker
        title = event.title or f"{name} Earnings Report"

        parts = ["Quarterly earnings report."]
        if f.get("fiscal_period"):
            parts.append(f"Fiscal period: {f['fiscal_period']}.")
        if f.get("eps_estimate") is not None:
            parts.append(f"EPS estimate: {f['eps_estimate']}.")
        if f.get("market_cap"):
            parts.append(f"Market cap: ${f['market_cap'] / 1e9:.0f}B.")
        description = event.summary or " ".join(parts)

        metadata = EarningsMetadata(
            company_name=f.get("company_name"),
            fiscal_date_ending=f.get("fiscal_date_ending"),
            eps_estimate=f.get("eps_estimate"),
            currency=f.get("currency"),
            report_time=f.get("report_time"),
            market_cap=f.get("market_cap"),
            sector=f.get("sector"),
            relationship="primary",
            source=event.source,
        )
        return CatalystDraft("earnings", ticker, title, description, event_date, metadata)

    def _generic(
        self,
        event: RawEvent,
        ticker: str,
        event_date: datetime,
        mapping: Optional[EntityMapping]
    ) -> CatalystDraft:
        f = event.fields
        title = event.title or f"{ticker} {event.catalyst_type} event"
        description = event.summary or generic_description(event.catalyst_type, ticker, title)

        if event.catalyst_type == "rate-decision":
            metadata: CatalystMetadata = RateDecisionMetadata(
                current_rate=f.get("current_rate"),
                expected_change_bps=f.get("expected_change_bps"),
            )
        else:
            metadata = MacroMetadata(indicator=f.get("indicator"), region=f.get("region"))
        metadata = metadata.with_updates(
            market_cap=f.get("market_cap"),
            sector=f.get("sector"),
            source=event.source,
            relationship="primary",
        )
        return CatalystDraft(event.catalyst_type, ticker, title, description, event_date, metadata)
