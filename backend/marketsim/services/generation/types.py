from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

from marketsim.core.exceptions import BarValidationError, GenerationError
from marketsim.services.calendar import NAMED_HORIZONS, AssetClass

PRICE_DECIMALS = 2


class Granularity(str, Enum):
    DAILY = "daily"
    HOURLY = "hourly"


class GenerationMode(str, Enum):
    """
    How a series picks its days.

    TRADING_DAYS walks a window of trading days. CALENDAR_FILL walks calendar
    days and fills closed days flat at the previous close. EXTENDED_INTRADAY
    adds hourly bars for the most recent trading days to the daily window.
    """

    TRADING_DAYS = "trading_days"
    CALENDAR_FILL = "calendar_fill"
    EXTENDED_INTRADAY = "extended_intraday"


Horizon = Union[int, str]


@dataclass(frozen=True)
class Bar:
    """One OHLCV record. ``timestamp`` is set only for intraday bars."""

    symbol: str
    trading_day: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    adjusted_close: float
    timestamp: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        symbol: str,
        trading_day: date,
        open_price: float,
        high: float,
        low: float,
        close: float,
        volume: int,
        timestamp: Optional[datetime] = None,
    ) -> "Bar":
        """Construct a bar, rounding prices to cents at this point only."""
        rounded_close = round(close, PRICE_DECIMALS)
        return cls(
            symbol=symbol,
            trading_day=trading_day,
            open=round(open_price, PRICE_DECIMALS),
            high=round(high, PRICE_DECIMALS),
            low=round(low, PRICE_DECIMALS),
            close=rounded_close,
            volume=int(volume),
            adjusted_close=rounded_close,
            timestamp=timestamp,
        )

    @property
    def granularity(self) -> Granularity:
        return Granularity.DAILY if self.timestamp is None else Granularity.HOURLY

    @property
    def is_intraday(self) -> bool:
        return self.timestamp is not None

    @property
    def key(self) -> tuple:
        return (self.symbol, self.trading_day, self.timestamp)

    def validate(self) -> None:
        """Raise BarValidationError if the bar breaks an OHLCV or key invariant."""
        if not self.symbol:
            raise BarValidationError("symbol is empty")
        if not isinstance(self.trading_day, date) or isinstance(self.trading_day, datetime):
            raise BarValidationError(f"trading_day must be a date, got {self.trading_day!r}")
        if self.timestamp is not None and self.timestamp.date() != self.trading_day:
            raise BarValidationError(
                f"timestamp {self.timestamp.isoformat()} outside trading day {self.trading_day}"
            )

        prices = (self.open, self.high, self.low, self.close, self.adjusted_close)
        if any(p is None or not math.isfinite(p) or p <= 0 for p in prices):
            raise BarValidationError(f"non-positive or non-finite price in {prices}")
        if self.volume is None or self.volume < 0:
            raise BarValidationError(f"volume is negative: {self.volume}")
        if self.low > self.high:
            raise BarValidationError(f"low ({self.low}) > high ({self.high})")
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise BarValidationError(
                f"OHLC inconsistent: O={self.open}, H={self.high}, L={self.low}, C={self.close}"
            )


@dataclass(frozen=True)
class SeriesRequest:
    """One unit of generation work. Created per ingestion unit, never persisted."""

    symbol: str
    asset_class: AssetClass
    horizon: Horizon
    include_intraday: bool = False
    fill_non_trading_days: bool = False
    reference_date: Optional[date] = None
    intraday_days: int = 7
    seed_price: Optional[float] = None

    def __post_init__(self) -> None:
        if isinstance(self.horizon, bool):
            raise GenerationError(f"Invalid horizon: {self.horizon!r}")
        if isinstance(self.horizon, int):
            if self.horizon < 0:
                raise GenerationError(f"Horizon must be non-negative, got {self.horizon}")
        elif isinstance(self.horizon, str):
            if self.horizon.upper() not in NAMED_HORIZONS:
                raise GenerationError(
                    f"Unknown horizon '{self.horizon}'. Valid options: {list(NAMED_HORIZONS)}"
                )
        else:
            raise GenerationError(f"Invalid horizon type: {type(self.horizon).__name__}")
        if self.intraday_days < 0:
            raise GenerationError(f"intraday_days must be non-negative, got {self.intraday_days}")
        if self.seed_price is not None and not self.seed_price > 0:
            raise GenerationError(f"seed_price must be positive, got {self.seed_price}")

    @property
    def mode(self) -> GenerationMode:
        if self.include_intraday:
            return GenerationMode.EXTENDED_INTRADAY
        if self.fill_non_trading_days or str(self.horizon).upper() == "7D":
            return GenerationMode.CALENDAR_FILL
        return GenerationMode.TRADING_DAYS


@dataclass
class SeriesResult:
    """Generated bars, oldest first, plus the closing price the walk ended on."""

    symbol: str
    daily: List[Bar] = field(default_factory=list)
    hourly: List[Bar] = field(default_factory=list)
    ending_price: Optional[float] = None

    @property
    def bars(self) -> List[Bar]:
        """Daily and hourly bars merged in chronological order."""
        return sorted(
            self.daily + self.hourly,
            key=lambda b: (b.trading_day, b.timestamp is not None, b.timestamp or datetime.min),
        )

    def __len__(self) -> int:
        return len(self.daily) + len(self.hourly)
