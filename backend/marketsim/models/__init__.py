# Base
from marketsim.models.base import TimestampMixin

# Market Data
from marketsim.models.bar import PriceBar, DAILY_TIMESTAMP_SENTINEL

__all__ = [
    "TimestampMixin",
    "PriceBar",
    "DAILY_TIMESTAMP_SENTINEL",
]
