from typing import Dict, Optional, Type
from marketsim.services.market_data.base import PriceSource, SourcePage
from marketsim.services.market_data.rate_limited import RateLimitedFetcher
from marketsim.services.market_data.polygon_provider import PolygonAggregatesSource, PolygonTickerSource
from marketsim.core.config import settings

SYMBOL_SOURCES: Dict[str, Type[PriceSource]] = {
    "polygon": PolygonTickerSource,
}


def get_symbol_source(
    name: Optional[str] = None,
    fetcher: Optional[RateLimitedFetcher] = None,
) -> Optional[PriceSource]:
    """Factory for the configured symbol listing source. None means "use the store"."""
    name = name or settings.SYMBOL_SOURCE
    if name == "store":
        return None
    source_class = SYMBOL_SOURCES.get(name)
    if not source_class:
        raise ValueError(f"Unknown symbol source: {name}")
    return source_class(fetcher or RateLimitedFetcher())


__all__ = [
    "PriceSource",
    "SourcePage",
    "RateLimitedFetcher",
    "PolygonAggregatesSource",
    "PolygonTickerSource",
    "get_symbol_source",
]
