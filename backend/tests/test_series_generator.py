from datetime import date, datetime, timedelta

import numpy as np
import pytest

from marketsim.core.exceptions import GenerationError
from marketsim.services.calendar import AssetClass, TradingCalendar
from marketsim.services.generation import SEED_PRICES, SeriesGenerator, SeriesRequest
from marketsim.services.generation.types import GenerationMode, Granularity

FRIDAY = date(2024, 3, 15)
MONDAY = date(2024, 3, 18)


def make_generator(seed: int = 11) -> SeriesGenerator:
    return SeriesGenerator(rng=np.random.default_rng(seed))


def assert_valid(bars):
    for bar in bars:
        bar.validate()
        assert bar.low <= min(bar.open, bar.close)
        assert bar.high >= max(bar.open, bar.close)
        assert bar.volume >= 0


def test_ten_equity_bars_skip_weekends():
    request = SeriesRequest("AAPL", AssetClass.EQUITY, 10, reference_date=FRIDAY)
    result = make_generator().generate(request)

    days = [bar.trading_day for bar in result.daily]
    assert len(days) == 10
    assert all(d.weekday() < 5 for d in days)
    assert (days[-1] - days[0]).days + 1 in (10, 12)
    assert days == sorted(days)
    assert result.hourly == []
    assert_valid(result.daily)


def test_ten_crypto_bars_are_consecutive():
    request = SeriesRequest("X:BTCUSD", AssetClass.CRYPTO, 10, reference_date=FRIDAY)
    result = make_generator().generate(request)

    days = [bar.trading_day for bar in result.daily]
    assert len(days) == 10
    assert days[-1] == FRIDAY
    assert all((b - a) == timedelta(days=1) for a, b in zip(days, days[1:]))
    assert all(bar.volume > 0 for bar in result.daily)


def test_seven_day_mode_flat_fills_weekend():
    request = SeriesRequest("AAPL", AssetClass.EQUITY, "7D", reference_date=MONDAY)
    assert request.mode == GenerationMode.CALENDAR_FILL

    result = make_generator().generate(request)
    assert len(result.daily) == 7

    by_day = {bar.trading_day: bar for bar in result.daily}
    friday_close = by_day[date(2024, 3, 15)].close
    weekend = [bar for bar in result.daily if bar.trading_day.weekday() >= 5]
    assert len(weekend) == 2
    assert [bar for bar in result.daily if bar.volume == 0] == weekend
    for bar in weekend:
        assert bar.open == bar.high == bar.low == bar.close == friday_close


def test_fill_mode_with_day_count():
    request = SeriesRequest(
        "MSFT", AssetClass.EQUITY, 30, fill_non_trading_days=True, reference_date=FRIDAY
    )
    result = make_generator().generate(request)

    assert len(result.daily) == 30
    closed = [bar for bar in result.daily if bar.trading_day.weekday() >= 5]
    assert closed
    assert all(bar.volume == 0 for bar in closed)
    assert_valid(result.daily)


def test_crypto_seven_day_mode_has_no_flat_days():
    request = SeriesRequest("X:ETHUSD", AssetClass.CRYPTO, "7D", reference_date=MONDAY)
    result = make_generator().generate(request)
    assert len(result.daily) == 7
    assert all(bar.volume > 0 for bar in result.daily)


def test_prices_chain_from_seed():
    request = SeriesRequest("AAPL", AssetClass.EQUITY, 20, reference_date=FRIDAY)
    result = make_generator().generate(request)

    assert result.daily[0].open == SEED_PRICES["AAPL"]
    for prev, bar in zip(result.daily, result.daily[1:]):
        assert bar.open == prev.close
    assert result.ending_price == result.daily[-1].close


def test_explicit_seed_overrides_table():
    request = SeriesRequest("AAPL", AssetClass.EQUITY, 5, reference_date=FRIDAY, seed_price=50.0)
    assert make_generator().generate(request).daily[0].open == 50.0
    assert make_generator().generate(request, seed_price=20.0).daily[0].open == 20.0


def test_unknown_symbol_uses_default_seed():
    request = SeriesRequest("ZZZZ", AssetClass.EQUITY, 3, reference_date=FRIDAY)
    assert make_generator().generate(request).daily[0].open == 100.0


def test_generation_does_not_touch_seed_table():
    before = dict(SEED_PRICES)
    make_generator().generate(SeriesRequest("AAPL", AssetClass.EQUITY, 50, reference_date=FRIDAY))
    assert dict(SEED_PRICES) == before
    with pytest.raises(TypeError):
        SEED_PRICES["AAPL"] = 1.0


def test_horizon_zero_is_empty():
    request = SeriesRequest("AAPL", AssetClass.EQUITY, 0, reference_date=FRIDAY)
    result = make_generator().generate(request)
    assert len(result) == 0
    assert result.bars == []
    assert result.ending_price == SEED_PRICES["AAPL"]


@pytest.mark.parametrize("horizon", [-1, "2W", True, 1.5])
def test_invalid_horizons(horizon):
    with pytest.raises(GenerationError):
        SeriesRequest("AAPL", AssetClass.EQUITY, horizon)


def test_named_horizon_matches_calendar_count():
    cal = TradingCalendar()
    _, expected = cal.resolve_horizon("1M", FRIDAY, AssetClass.EQUITY)
    request = SeriesRequest("AAPL", AssetClass.EQUITY, "1M", reference_date=FRIDAY)
    result = make_generator().generate(request)
    assert len(result.daily) == expected


def test_shape_is_fixed_but_values_vary():
    request = SeriesRequest("NVDA", AssetClass.EQUITY, 30, reference_date=FRIDAY)
    first = make_generator(1).generate(request)
    second = make_generator(2).generate(request)

    assert len(first.daily) == len(second.daily) == 30
    assert [b.trading_day for b in first.daily] == [b.trading_day for b in second.daily]
    assert [b.close for b in first.daily] != [b.close for b in second.daily]


def test_same_seed_same_values():
    request = SeriesRequest("NVDA", AssetClass.EQUITY, 30, reference_date=FRIDAY, include_intraday=True)
    assert make_generator(5).generate(request).bars == make_generator(5).generate(request).bars


def test_intraday_bars():
    request = SeriesRequest(
        "AAPL", AssetClass.EQUITY, 10, include_intraday=True, intraday_days=3, reference_date=MONDAY
    )
    assert request.mode == GenerationMode.EXTENDED_INTRADAY
    result = make_generator().generate(request)

    assert len(result.daily) == 10
    assert len(result.hourly) == 3 * 24
    daily_by_day = {bar.trading_day: bar for bar in result.daily}
    hourly_days = sorted({bar.trading_day for bar in result.hourly})
    assert hourly_days == [date(2024, 3, 14), date(2024, 3, 15), MONDAY]

    for day in hourly_days:
        hours = [bar for bar in result.hourly if bar.trading_day == day]
        assert len(hours) == 24
        assert [bar.timestamp.hour for bar in hours] == list(range(24))
        day_bar = daily_by_day[day]
        for bar in hours:
            assert datetime.combine(day, datetime.min.time()) <= bar.timestamp
            assert bar.timestamp < datetime.combine(day + timedelta(days=1), datetime.min.time())
            assert bar.granularity == Granularity.HOURLY
            assert day_bar.low <= bar.low
            assert bar.high <= day_bar.high
        assert hours[0].open == day_bar.open
    assert_valid(result.hourly)


def test_crypto_intraday_includes_weekend():
    request = SeriesRequest(
        "X:BTCUSD", AssetClass.CRYPTO, 7, include_intraday=True, intraday_days=7, reference_date=MONDAY
    )
    result = make_generator().generate(request)
    assert len(result.hourly) == 7 * 24
    assert any(bar.trading_day.weekday() >= 5 for bar in result.hourly)


def test_generate_bars_is_chronological():
    request = SeriesRequest(
        "AAPL", AssetClass.EQUITY, 5, include_intraday=True, intraday_days=2, reference_date=FRIDAY
    )
    bars = list(make_generator().generate_bars(request))

    assert len(bars) == 5 + 48
    assert [b.trading_day for b in bars] == sorted(b.trading_day for b in bars)
    thursday = [b for b in bars if b.trading_day == date(2024, 3, 14)]
    assert thursday[0].timestamp is None
    assert all(b.timestamp is not None for b in thursday[1:])
