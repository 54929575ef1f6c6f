"""
Feature Extraction

Builds the predictor's FeatureVector from a stored catalyst, its company
profile and one pluggable FeatureProvider per external feed.

The default providers are deterministic lookup tables and constants
standing in for feeds that are not wired up (price history, sentiment,
sector ETFs, macro data, option flow). Tests inject their own.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Protocol

from pipeline.models import Catalyst, FeatureVector
from utils.datetime_utils import days_until, utc_now

logger = logging.getLogger(__name__)


VOLATILE_TICKERS = ["TSLA", "NVDA", "AMD", "MRNA", "GME"]
STABLE_TICKERS = ["JNJ", "PG", "KO", "WMT", "JPM"]
HOT_SECTORS = ["Technology", "AI", "Biotechnology", "Clean Energy"]
COLD_SECTORS = ["Real Estate", "Utilities", "Consumer Staples"]


class FeatureProvider(Protocol):
    """One external feature feed."""

    def value(self, ticker: str, sector: Optional[str]) -> Optional[float]:
        ...


class ConstantProvider:
    """Returns the same value for every ticker."""

    def __init__(self, constant: Optional[float]):
        self.constant = constant

    def value(self, ticker: str, sector: Optional[str]) -> Optional[float]:
        return self.constant


class TickerTableProvider:
    """Looks the ticker up in fixed groups."""

    def __init__(self, groups: Dict[float, Iterable[str]], default: Optional[float]):
        self.lookup = {t: v for v, tickers in groups.items() for t in tickers}
        self.default = default

    def value(self, ticker: str, sector: Optional[str]) -> Optional[float]:
        return self.lookup.get(ticker, self.default)


class SectorTableProvider:
    """Matches the sector name against fixed keyword groups."""

    def __init__(self, groups: Dict[float, Iterable[str]], default: Optional[float]):
        self.groups = [(v, list(keywords)) for v, keywords in groups.items()]
        self.default = default

    def value(self, ticker: str, sector: Optional[str]) -> Optional[float]:
        if not sector:
            return self.default
        for value, keywords in self.groups:
            if any(k in sector for k in keywords):
                return value
        return self.default


@dataclass
class FeatureProviders:
    """One provider slot per external feature."""
    volatility: FeatureProvider
    sentiment: FeatureProvider
    sector_momentum: FeatureProvider
    macro_rate_environment: FeatureProvider
    option_flow: FeatureProvider

    @classmethod
    def defaults(cls) -> "FeatureProviders":
        return cls(
            volatility=TickerTableProvider({0.42: VOLATILE_TICKERS, 0.2: STABLE_TICKERS}, default=0.25),
            sentiment=ConstantProvider(0.0),
            sector_momentum=SectorTableProvider({0.35: HOT_SECTORS, 0.0: COLD_SECTORS}, default=0.0),
            macro_rate_environment=ConstantProvider(0.1),
            option_flow=ConstantProvider(0.5),
        )


class FeatureExtractor:
    """Derives a FeatureVector for a stored catalyst."""

    def __init__(
        self,
        store,
        providers: Optional[FeatureProviders] = None,
        now_fn: Callable[[], datetime] = utc_now
    ):
        """
        Initialize extractor.

        Args:
            store: CatalystStore (company profiles)
            providers: Feature providers (defaults: deterministic tables)
            now_fn: Clock, injectable for tests
        """
        self.store = store
        self.providers = providers or FeatureProviders.defaults()
        self.now_fn = now_fn

    def extract(self, catalyst: Catalyst) -> FeatureVector:
        """
        Build features for a catalyst.

        Profile data takes precedence over catalyst metadata for market
        cap and sector.
        """
        profile = self.store.get_profile(catalyst.ticker) if self.store else None

        market_cap = (profile.market_cap if profile else None) or catalyst.metadata.market_cap
        sector = (profile.sector if profile else None) or catalyst.metadata.sector
        p = self.providers

        features = FeatureVector(
            catalyst_type=catalyst.type,
            ticker=catalyst.ticker,
            days_until_event=days_until(catalyst.event_date, self.now_fn()),
            market_cap=market_cap,
            sector=sector,
            historical_volatility_30d=p.volatility.value(catalyst.ticker, sector),
            sentiment_delta_24h=p.sentiment.value(catalyst.ticker, sector),
            debt_to_equity=profile.debt_to_equity if profile else None,
            sector_momentum=p.sector_momentum.value(catalyst.ticker, sector),
            macro_rate_environment=p.macro_rate_environment.value(catalyst.ticker, sector),
            pre_market_volume=profile.pre_market_volume if profile else None,
            option_flow_sentiment=p.option_flow.value(catalyst.ticker, sector),
        )
        logger.debug(f"Features for {catalyst.ticker}: {features}")
        return features
