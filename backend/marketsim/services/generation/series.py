"""
Series generation.

Turns a ``SeriesRequest`` into daily (and optionally hourly) bars. Dates are
picked by walking the calendar backward from the reference date; prices are
then chained forward from the seed so every bar opens at the previous close.
"""

import logging
from datetime import date, datetime, time
from typing import Iterator, List, Mapping, Optional

import numpy as np

from marketsim.services.calendar import TradingCalendar, calendar as default_calendar
from marketsim.services.generation.price_walk import (
    PriceWalkGenerator,
    VolatilityProfile,
    WalkStep,
    in_session,
    profile_for,
)
from marketsim.services.generation.seeds import seed_price_for
from marketsim.services.generation.types import (
    PRICE_DECIMALS,
    Bar,
    GenerationMode,
    SeriesRequest,
    SeriesResult,
)

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24


class SeriesGenerator:
    """Generates OHLCV series for one symbol at a time."""

    def __init__(
        self,
        trading_calendar: Optional[TradingCalendar] = None,
        walker: Optional[PriceWalkGenerator] = None,
        rng: Optional[np.random.Generator] = None,
        seeds: Optional[Mapping[str, float]] = None,
    ):
        self.calendar = trading_calendar or default_calendar
        self.walker = walker or PriceWalkGenerator(rng)
        self.seeds = seeds

    def _select_days(self, request: SeriesRequest, reference_date: date, fill: bool) -> List[date]:
        asset_class = request.asset_class
        horizon = request.horizon

        if isinstance(horizon, int):
            if fill:
                return self.calendar.calendar_days_back(reference_date, horizon)
            return self.calendar.trading_days_back(reference_date, horizon, asset_class)

        start = self.calendar.horizon_start(horizon, reference_date)
        if fill:
            span = (reference_date - start).days + 1
            return self.calendar.calendar_days_back(reference_date, span)
        return self.calendar.trading_days_between(start, reference_date, asset_class)

    def _hourly_bars(
        self,
        request: SeriesRequest,
        day: date,
        step: WalkStep,
        profile: VolatilityProfile,
    ) -> List[Bar]:
        bars = []
        price = step.open
        for hour in range(HOURS_PER_DAY):
            session = in_session(hour, day, request.asset_class, self.calendar)
            hourly = self.walker.next_hourly_bar(price, profile, session, step.low, step.high)
            bars.append(Bar.build(
                symbol=request.symbol,
                trading_day=day,
                open_price=hourly.open,
                high=hourly.high,
                low=hourly.low,
                close=hourly.close,
                volume=hourly.volume,
                timestamp=datetime.combine(day, time(hour=hour)),
            ))
            price = hourly.close
        return bars

    def generate(self, request: SeriesRequest, seed_price: Optional[float] = None) -> SeriesResult:
        """
        Generate the series described by ``request``.

        ``seed_price`` overrides ``request.seed_price``, which overrides the
        reference seed table. Horizon 0 yields an empty result whose ending
        price is the seed.
        """
        seed = seed_price if seed_price is not None else request.seed_price
        if seed is None:
            seed = seed_price_for(request.symbol, self.seeds)

        reference_date = request.reference_date or date.today()
        mode = request.mode
        fill = request.fill_non_trading_days or str(request.horizon).upper() == "7D"

        days = self._select_days(request, reference_date, fill)
        result = SeriesResult(symbol=request.symbol, ending_price=round(seed, PRICE_DECIMALS))
        if not days:
            return result

        intraday_days = set()
        if mode == GenerationMode.EXTENDED_INTRADAY and request.intraday_days > 0:
            open_days = [d for d in days if self.calendar.is_trading_day(d, request.asset_class)]
            intraday_days = set(open_days[-request.intraday_days:])

        profile = profile_for(request.symbol, request.asset_class)
        price = seed
        for day in days:
            if fill and not self.calendar.is_trading_day(day, request.asset_class):
                step = self.walker.flat_bar(price)
            else:
                step = self.walker.next_bar(price, profile)

            result.daily.append(Bar.build(
                symbol=request.symbol,
                trading_day=day,
                open_price=step.open,
                high=step.high,
                low=step.low,
                close=step.close,
                volume=step.volume,
            ))
            if day in intraday_days:
                result.hourly.extend(self._hourly_bars(request, day, step, profile))
            price = step.close

        result.ending_price = round(price, PRICE_DECIMALS)
        logger.debug(
            f"Generated {request.symbol} ({mode.value}): {len(result.daily)} daily, "
            f"{len(result.hourly)} hourly, {days[0]} -> {days[-1]}"
        )
        return result

    def generate_bars(self, request: SeriesRequest, seed_price: Optional[float] = None) -> Iterator[Bar]:
        """Daily and hourly bars as one chronological stream."""
        yield from self.generate(request, seed_price).bars

