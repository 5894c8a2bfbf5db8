"""
Where ingestion gets its bars from.

``SyntheticBarSource`` runs the series generator; ``ProviderBarSource`` pulls
aggregates from Polygon through the rate-limited fetcher. ``BAR_SOURCE``
selects one; both produce the same ``Bar`` objects for the upserter.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, List, Mapping, Optional, Type

import numpy as np

from marketsim.core.config import settings
from marketsim.services.calendar import TradingCalendar, calendar as default_calendar
from marketsim.services.generation import SeriesGenerator
from marketsim.services.generation.types import Bar, Granularity, SeriesRequest
from marketsim.services.market_data import PolygonAggregatesSource, RateLimitedFetcher

logger = logging.getLogger(__name__)


class BarSource(ABC):
    """Produces the bars for one ingestion unit."""

    name = "base"

    @abstractmethod
    async def bars_for(self, request: SeriesRequest, rng: Optional[np.random.Generator] = None) -> List[Bar]:
        pass

    async def aclose(self) -> None:
        pass


class SyntheticBarSource(BarSource):
    name = "synthetic"

    def __init__(
        self,
        trading_calendar: Optional[TradingCalendar] = None,
        seeds: Optional[Mapping[str, float]] = None,
    ):
        self.calendar = trading_calendar or default_calendar
        self.seeds = seeds

    async def bars_for(self, request: SeriesRequest, rng: Optional[np.random.Generator] = None) -> List[Bar]:
        generator = SeriesGenerator(trading_calendar=self.calendar, rng=rng, seeds=self.seeds)
        return generator.generate(request).bars


class ProviderBarSource(BarSource):
    name = "polygon"

    def __init__(
        self,
        fetcher: Optional[RateLimitedFetcher] = None,
        trading_calendar: Optional[TradingCalendar] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.fetcher = fetcher or RateLimitedFetcher()
        self.calendar = trading_calendar or default_calendar
        self.api_key = api_key
        self.base_url = base_url

    def _source(self, symbol: str, start: date, end: date, granularity: Granularity) -> PolygonAggregatesSource:
        return PolygonAggregatesSource(
            self.fetcher,
            symbol,
            start,
            end,
            granularity,
            api_key=self.api_key,
            base_url=self.base_url,
        )

    async def bars_for(self, request: SeriesRequest, rng: Optional[np.random.Generator] = None) -> List[Bar]:
        reference_date = request.reference_date or date.today()
        start, count = self.calendar.resolve_horizon(request.horizon, reference_date, request.asset_class)
        if count == 0:
            return []

        bars = await self._source(request.symbol, start, reference_date, Granularity.DAILY).fetch_bars()
        if request.include_intraday and request.intraday_days > 0:
            recent = self.calendar.trading_days_back(reference_date, request.intraday_days, request.asset_class)
            hourly = await self._source(request.symbol, recent[0], reference_date, Granularity.HOURLY).fetch_bars()
            bars.extend(hourly)

        logger.debug(f"Fetched {len(bars)} bars for {request.symbol} from {start} to {reference_date}")
        return bars

    async def aclose(self) -> None:
        await self.fetcher.aclose()


BAR_SOURCES: Dict[str, Type[BarSource]] = {
    "synthetic": SyntheticBarSource,
    "polygon": ProviderBarSource,
}


def get_bar_source(name: Optional[str] = None, fetcher: Optional[RateLimitedFetcher] = None) -> BarSource:
    """Factory to get the configured bar source. Provider sources share ``fetcher`` when given."""
    name = name or settings.BAR_SOURCE
    source_class = BAR_SOURCES.get(name)
    if not source_class:
        raise ValueError(f"Unknown bar source: {name}")
    if source_class is ProviderBarSource:
        return ProviderBarSource(fetcher=fetcher)
    return source_class()
