"""
Random-walk price primitives.

Every price path in the generator is built from three steps: a daily bar, a
flat filler bar for closed days, and an hourly bar bounded by its day's range.
Values are left unrounded here; rounding happens when a ``Bar`` is built.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

import numpy as np

from marketsim.services.calendar import AssetClass, TradingCalendar, calendar as default_calendar

HIGH_VOL_MARKERS = ("BTC", "ETH")
MAJOR_INDEX_MARKERS = ("^GSPC", "^IXIC", "^DJI")
MAJOR_ETFS = frozenset(["SPY", "QQQ", "DIA", "IWM", "VTI", "VOO"])
POPULAR_ETF_MARKERS = ("SPY", "QQQ", "VTI")

SESSION_OPEN_HOUR = 9
SESSION_CLOSE_HOUR = 16


@dataclass(frozen=True)
class VolatilityProfile:
    """Per-symbol walk parameters."""

    daily_vol: float
    session_vol: float
    off_session_vol: float
    base_volume: int

    @property
    def wick_vol(self) -> float:
        return self.daily_vol / 2


@dataclass(frozen=True)
class WalkStep:
    open: float
    high: float
    low: float
    close: float
    volume: int


def base_volume_for(symbol: str) -> int:
    upper = symbol.upper()
    if any(marker in upper for marker in HIGH_VOL_MARKERS):
        return 50_000_000
    if any(marker in upper for marker in MAJOR_INDEX_MARKERS):
        return 80_000_000
    if upper in MAJOR_ETFS:
        return 60_000_000
    if any(marker in upper for marker in POPULAR_ETF_MARKERS):
        return 50_000_000
    return 20_000_000


def profile_for(symbol: str, asset_class: Optional[AssetClass] = None) -> VolatilityProfile:
    """
    Build the walk parameters for a symbol.

    BTC and ETH pairs walk at twice the volatility of everything else. The
    asset class is accepted for callers that already know it but does not
    change the numbers.
    """
    high_vol = any(marker in symbol.upper() for marker in HIGH_VOL_MARKERS)
    return VolatilityProfile(
        daily_vol=0.03 if high_vol else 0.015,
        session_vol=0.005 if high_vol else 0.002,
        off_session_vol=0.001 if high_vol else 0.0005,
        base_volume=base_volume_for(symbol),
    )


def in_session(
    hour: int,
    day: date,
    asset_class: AssetClass,
    trading_calendar: Optional[TradingCalendar] = None,
) -> bool:
    """True for hours 9..16 on a trading day (the 09:30-16:00 session)."""
    cal = trading_calendar or default_calendar
    return cal.is_trading_day(day, asset_class) and SESSION_OPEN_HOUR <= hour <= SESSION_CLOSE_HOUR


class PriceWalkGenerator:
    """Bounded random walk driven by an injected numpy ``Generator``."""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def _uniform(self, low: float, high: float) -> float:
        return float(self.rng.uniform(low, high))

    def draw_volume(self, profile: VolatilityProfile) -> int:
        return int(profile.base_volume * self._uniform(0.7, 1.3))

    def next_bar(self, open_price: float, profile: VolatilityProfile) -> WalkStep:
        """One daily step: close moves up to +/- daily_vol from the open, wicks extend past both."""
        change = self._uniform(-profile.daily_vol, profile.daily_vol)
        close = open_price * (1 + change)
        high = max(open_price, close) * (1 + self._uniform(0, profile.wick_vol))
        low = min(open_price, close) * (1 - self._uniform(0, profile.wick_vol))
        return WalkStep(
            open=open_price,
            high=high,
            low=low,
            close=close,
            volume=self.draw_volume(profile),
        )

    @staticmethod
    def flat_bar(prev_close: float) -> WalkStep:
        """Closed-market filler: every price equals the previous close, no volume."""
        return WalkStep(open=prev_close, high=prev_close, low=prev_close, close=prev_close, volume=0)

    def next_hourly_bar(
        self,
        open_price: float,
        profile: VolatilityProfile,
        session: bool,
        day_low: float,
        day_high: float,
    ) -> WalkStep:
        """One hourly step, kept inside ``[day_low, day_high]``."""
        vol = profile.session_vol if session else profile.off_session_vol
        open_price = min(max(open_price, day_low), day_high)
        close = open_price * (1 + self._uniform(-vol, vol))
        close = min(max(close, day_low), day_high)

        high = min(max(open_price, close) * (1 + self._uniform(0, vol * 0.3)), day_high)
        low = max(min(open_price, close) * (1 - self._uniform(0, vol * 0.3)), day_low)

        if session:
            volume = int(self.draw_volume(profile) / 8 * self._uniform(0.8, 1.2))
        else:
            volume = int(self.draw_volume(profile) * 0.01 * self._uniform(0.5, 1.0))

        return WalkStep(open=open_price, high=high, low=low, close=close, volume=volume)
