"""
Trading calendar and asset classification.

Decides, per asset class, whether a date is a trading day. Crypto trades every
calendar day; every other class trades Monday to Friday. Exchange holidays are
not modelled.
"""

import re
from datetime import date, timedelta
from enum import Enum
from typing import List, Tuple, Union

import pandas as pd


class AssetClass(str, Enum):
    EQUITY = "equity"
    ETF = "etf"
    INDEX = "index"
    CRYPTO = "crypto"
    COMMODITY = "commodity"
    FOREX = "forex"


KNOWN_ETFS = frozenset([
    # Major Market ETFs
    "SPY", "QQQ", "DIA", "IWM", "VTI", "VOO", "VEA", "VWO",
    # Bond ETFs
    "AGG", "BND", "TLT", "IEF", "SHY", "LQD", "HYG", "JNK", "EMB", "TIP",
    # Sector ETFs (SPDR)
    "XLK", "XLF", "XLV", "XLE", "XLI", "XLP", "XLY", "XLB", "XLU", "XLRE", "XLC",
    # Commodity ETFs
    "GLD", "SLV", "GDX", "GDXJ", "SIL", "DBC", "UUP",
    # International ETFs
    "EWJ", "EWU", "EWC", "EWG", "EWA", "EWZ", "EWY", "EWH", "EWT", "EWS",
    # Vanguard / iShares
    "VUG", "VTV", "VXF", "VB", "VBR", "VYM", "VXUS",
    "IVV", "IJH", "IJR", "IWF", "IWD", "IWN", "IWO", "IWB", "IWV",
    # Other popular ETFs
    "ARKK", "ARKQ", "ARKW", "ARKG", "ARKF", "TQQQ", "SQQQ", "SPXL", "SPXS",
    "FXI", "ASHR", "MCHI", "KWEB", "EFA", "EEM", "IEFA", "IEMG",
])

COMMODITY_SYMBOLS = frozenset([
    "XAUUSD", "XAGUSD", "CL", "NG", "GC", "SI", "HG", "ZC", "ZS", "ZW",
    "KC", "CT", "SB", "CC", "LB", "OJ", "LE", "HE", "GF", "GX",
])

# Metal and energy pairs share the X: prefix with crypto but trade on weekdays
_NON_CRYPTO_X_MARKERS = ("XAU", "XAG", "OIL", "GAS")
_FOREX_PAIR = re.compile(r"^[A-Z]{3}/[A-Z]{3}$")

NAMED_HORIZONS = ("7D", "1M", "3M", "6M", "YTD", "1Y", "3Y", "5Y", "MAX")
MAX_HISTORY_YEARS = 10


def classify_symbol(symbol: str) -> AssetClass:
    """Derive the asset class from a ticker symbol."""
    upper = symbol.strip().upper()

    if upper.startswith("^"):
        return AssetClass.INDEX
    if upper.startswith("X:"):
        if any(marker in upper for marker in _NON_CRYPTO_X_MARKERS):
            return AssetClass.COMMODITY
        return AssetClass.CRYPTO
    if upper.startswith("C:") or _FOREX_PAIR.match(upper):
        return AssetClass.FOREX
    if upper in COMMODITY_SYMBOLS:
        return AssetClass.COMMODITY
    if upper in KNOWN_ETFS:
        return AssetClass.ETF
    return AssetClass.EQUITY


class TradingCalendar:
    """Weekday calendar for traditional assets, continuous calendar for crypto."""

    def is_trading_day(self, day: date, asset_class: AssetClass) -> bool:
        if asset_class == AssetClass.CRYPTO:
            return True
        return day.weekday() < 5

    def previous_trading_day(self, day: date, asset_class: AssetClass) -> date:
        """Latest trading day strictly before ``day``."""
        candidate = day - timedelta(days=1)
        while not self.is_trading_day(candidate, asset_class):
            candidate -= timedelta(days=1)
        return candidate

    def last_trading_day(self, day: date, asset_class: AssetClass) -> date:
        """``day`` itself when it trades, otherwise the previous trading day."""
        if self.is_trading_day(day, asset_class):
            return day
        return self.previous_trading_day(day, asset_class)

    def trading_days_back(self, end: date, count: int, asset_class: AssetClass) -> List[date]:
        """The ``count`` most recent trading days on or before ``end``, oldest first."""
        days: List[date] = []
        if count <= 0:
            return days
        cursor = end
        while len(days) < count:
            if self.is_trading_day(cursor, asset_class):
                days.append(cursor)
            cursor -= timedelta(days=1)
        days.reverse()
        return days

    def calendar_days_back(self, end: date, count: int) -> List[date]:
        """``count`` consecutive calendar days ending at ``end``, oldest first."""
        if count <= 0:
            return []
        start = end - timedelta(days=count - 1)
        return [start + timedelta(days=offset) for offset in range(count)]

    def trading_days_between(self, start: date, end: date, asset_class: AssetClass) -> List[date]:
        """Trading days in the inclusive range ``[start, end]``."""
        days = []
        cursor = start
        while cursor <= end:
            if self.is_trading_day(cursor, asset_class):
                days.append(cursor)
            cursor += timedelta(days=1)
        return days

    def horizon_start(self, horizon: str, reference_date: date) -> date:
        """Inclusive calendar start of a named horizon ending at ``reference_date``."""
        key = horizon.upper()
        ref = pd.Timestamp(reference_date)
        if key == "7D":
            return reference_date - timedelta(days=6)
        if key == "YTD":
            return date(reference_date.year, 1, 1)

        offsets = {
            "1M": pd.DateOffset(months=1),
            "3M": pd.DateOffset(months=3),
            "6M": pd.DateOffset(months=6),
            "1Y": pd.DateOffset(years=1),
            "3Y": pd.DateOffset(years=3),
            "5Y": pd.DateOffset(years=5),
            "MAX": pd.DateOffset(years=MAX_HISTORY_YEARS),
        }
        if key not in offsets:
            raise ValueError(f"Unknown horizon: {horizon}")
        start = (ref - offsets[key]).date()
        return start + timedelta(days=1)

    def resolve_horizon(
        self,
        horizon: Union[int, str],
        reference_date: date,
        asset_class: AssetClass,
    ) -> Tuple[date, int]:
        """
        Resolve a horizon to ``(start, trading_day_count)``.

        Integer horizons are already trading-day counts; named ranges are
        measured on the calendar and counted with this asset class's rules.
        """
        if isinstance(horizon, int):
            days = self.trading_days_back(reference_date, horizon, asset_class)
            start = days[0] if days else reference_date
            return start, len(days)

        start = self.horizon_start(horizon, reference_date)
        count = len(self.trading_days_between(start, reference_date, asset_class))
        return start, count


calendar = TradingCalendar()
