"""
Mapping between ``Bar`` objects and ``bars`` table rows.

Daily bars have no timestamp in memory and the sentinel timestamp in storage.
This module is the only place that translates between the two.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from marketsim.models.bar import DAILY_TIMESTAMP_SENTINEL
from marketsim.services.generation.types import Bar

KEY_COLUMNS = ("symbol", "trading_day", "timestamp")
VALUE_COLUMNS = ("granularity", "open", "high", "low", "close", "adjusted_close", "volume")


def to_storage_timestamp(timestamp: Optional[datetime]) -> datetime:
    return DAILY_TIMESTAMP_SENTINEL if timestamp is None else timestamp


def from_storage_timestamp(timestamp: Optional[datetime]) -> Optional[datetime]:
    if timestamp is None or timestamp == DAILY_TIMESTAMP_SENTINEL:
        return None
    return timestamp


def bar_to_row(bar: Bar, now: Optional[datetime] = None) -> dict:
    """Column values for an INSERT of ``bar``."""
    now = now or datetime.utcnow()
    return {
        "symbol": bar.symbol,
        "trading_day": bar.trading_day,
        "timestamp": to_storage_timestamp(bar.timestamp),
        "granularity": bar.granularity.value,
        "open": bar.open,
        "high": bar.high,
        "low": bar.low,
        "close": bar.close,
        "adjusted_close": bar.adjusted_close,
        "volume": bar.volume,
        "created_at": now,
        "updated_at": now,
    }


def row_to_bar(row: Mapping[str, Any]) -> Bar:
    """Rebuild a ``Bar`` from a table row (NUMERIC columns come back as Decimal)."""
    return Bar(
        symbol=row["symbol"],
        trading_day=row["trading_day"],
        open=float(row["open"]),
        high=float(row["high"]),
        low=float(row["low"]),
        close=float(row["close"]),
        volume=int(row["volume"]),
        adjusted_close=float(row["adjusted_close"]),
        timestamp=from_storage_timestamp(row["timestamp"]),
    )
