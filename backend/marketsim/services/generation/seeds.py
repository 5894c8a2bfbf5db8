"""
Reference starting prices for synthetic series.

These are generation inputs only, not market data. The table is read-only;
callers pass the seed they want into the generator explicitly.
"""

from types import MappingProxyType
from typing import Mapping, Optional

from marketsim.core.config import settings

_SEED_PRICES = {
    # Tech stocks
    "AAPL": 175.00,
    "MSFT": 380.00,
    "GOOGL": 140.00,
    "AMZN": 150.00,
    "TSLA": 250.00,
    "META": 300.00,
    "NVDA": 500.00,
    "NFLX": 400.00,
    "AMD": 120.00,
    "INTC": 45.00,
    # Finance
    "JPM": 150.00,
    "BAC": 35.00,
    "GS": 400.00,
    "V": 250.00,
    "MA": 400.00,
    # Healthcare
    "JNJ": 160.00,
    "PFE": 30.00,
    "UNH": 500.00,
    # Consumer
    "WMT": 160.00,
    "DIS": 100.00,
    # Indices
    "^GSPC": 4500.00,
    "^DJI": 38000.00,
    "^IXIC": 14000.00,
    "^RUT": 2000.00,
    "^FTSE": 7500.00,
    "^N225": 38000.00,
    "^GSPTSE": 21000.00,
    # ETFs
    "SPY": 450.00,
    "QQQ": 380.00,
    "DIA": 380.00,
    "IWM": 200.00,
    "VTI": 240.00,
    "VOO": 450.00,
    "VEA": 50.00,
    "VWO": 45.00,
    "AGG": 100.00,
    "BND": 80.00,
    "TLT": 95.00,
    "IEF": 105.00,
    "SHY": 82.00,
    "LQD": 120.00,
    "HYG": 75.00,
    "JNK": 100.00,
    "EMB": 90.00,
    "TIP": 110.00,
    "XLK": 200.00,
    "XLF": 40.00,
    "XLV": 150.00,
    "XLE": 85.00,
    "XLI": 120.00,
    "XLP": 75.00,
    "XLY": 180.00,
    "XLB": 80.00,
    "XLU": 65.00,
    "XLRE": 45.00,
    "XLC": 70.00,
    "GLD": 200.00,
    "SLV": 22.00,
    "GDX": 30.00,
    "GDXJ": 40.00,
    "SIL": 25.00,
    "EWJ": 70.00,
    "EWU": 35.00,
    "EWC": 35.00,
    "EWG": 30.00,
    "EWA": 25.00,
    "EWZ": 28.00,
    # Crypto
    "X:BTCUSD": 67000.00,
    "X:ETHUSD": 3400.00,
    # Commodities
    "XAUUSD": 2345.00,
    "XAGUSD": 28.50,
}

SEED_PRICES: Mapping[str, float] = MappingProxyType(_SEED_PRICES)


def seed_price_for(symbol: str, seeds: Optional[Mapping[str, float]] = None) -> float:
    """Look up the starting price for a symbol, falling back to the configured default."""
    table = SEED_PRICES if seeds is None else seeds
    return float(table.get(symbol.upper(), settings.DEFAULT_SEED_PRICE))
