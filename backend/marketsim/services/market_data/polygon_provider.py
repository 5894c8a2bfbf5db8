import logging
from datetime import date, datetime, timezone
from typing import List, Optional

import httpx

from marketsim.core.config import settings
from marketsim.core.exceptions import ConfigError
from marketsim.services.generation.types import Bar, Granularity
from marketsim.services.market_data.base import PriceSource, SourcePage
from marketsim.services.market_data.rate_limited import RateLimitedFetcher

logger = logging.getLogger(__name__)

_TIMESPANS = {
    Granularity.DAILY: "day",
    Granularity.HOURLY: "hour",
}


def _require_key(api_key: Optional[str]) -> str:
    key = settings.POLYGON_API_KEY if api_key is None else api_key
    if not key:
        raise ConfigError("POLYGON_API_KEY not configured")
    return key


def _with_key(next_url: str, api_key: str) -> str:
    """``next_url`` carries every query parameter except the key."""
    return str(httpx.URL(next_url).copy_merge_params({"apiKey": api_key}))


class PolygonTickerSource(PriceSource):
    """Active tickers from Polygon's reference endpoint, paged through ``next_url``."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        market: str = "stocks",
        page_size: int = 1000,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.market = market
        self.page_size = page_size
        self.api_key = _require_key(api_key)
        self.base_url = (base_url or settings.POLYGON_BASE_URL).rstrip("/")

    async def fetch_page(self, cursor: Optional[str] = None) -> SourcePage:
        if cursor:
            data = await self.fetcher.get_json(_with_key(cursor, self.api_key))
        else:
            data = await self.fetcher.get_json(
                f"{self.base_url}/v3/reference/tickers",
                params={
                    "market": self.market,
                    "active": "true",
                    "limit": self.page_size,
                    "apiKey": self.api_key,
                },
            )

        tickers = [row["ticker"] for row in data.get("results") or [] if row.get("ticker")]
        logger.debug(f"Fetched {len(tickers)} {self.market} tickers from Polygon")
        return SourcePage(items=tickers, next_cursor=data.get("next_url") or None)


class PolygonAggregatesSource(PriceSource):
    """OHLCV aggregates for one symbol and date range."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        symbol: str,
        start: date,
        end: date,
        granularity: Granularity = Granularity.DAILY,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.symbol = symbol
        self.start = start
        self.end = end
        self.granularity = Granularity(granularity)
        self.api_key = _require_key(api_key)
        self.base_url = (base_url or settings.POLYGON_BASE_URL).rstrip("/")

    def _to_bar(self, row: dict) -> Bar:
        moment = datetime.fromtimestamp(row["t"] / 1000, tz=timezone.utc).replace(tzinfo=None)
        return Bar.build(
            symbol=self.symbol,
            trading_day=moment.date(),
            open_price=float(row["o"]),
            high=float(row["h"]),
            low=float(row["l"]),
            close=float(row["c"]),
            volume=int(row.get("v") or 0),
            timestamp=moment if self.granularity == Granularity.HOURLY else None,
        )

    async def fetch_page(self, cursor: Optional[str] = None) -> SourcePage:
        if cursor:
            data = await self.fetcher.get_json(_with_key(cursor, self.api_key))
        else:
            timespan = _TIMESPANS[self.granularity]
            url = (
                f"{self.base_url}/v2/aggs/ticker/{self.symbol}/range/1/{timespan}/"
                f"{self.start.isoformat()}/{self.end.isoformat()}"
            )
            data = await self.fetcher.get_json(
                url,
                params={"adjusted": "true", "sort": "asc", "limit": 50000, "apiKey": self.api_key},
            )

        bars = [self._to_bar(row) for row in data.get("results") or []]
        return SourcePage(items=bars, next_cursor=data.get("next_url") or None)

    async def fetch_bars(self) -> List[Bar]:
        return await self.fetch_all()
