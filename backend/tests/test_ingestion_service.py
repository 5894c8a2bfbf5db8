import asyncio
from datetime import date
from typing import List, Optional

import numpy as np
import pytest

from marketsim.core.exceptions import ConfigError
from marketsim.services import ingestion_service
from marketsim.services.bar_sources import (
    BarSource,
    ProviderBarSource,
    SyntheticBarSource,
    get_bar_source,
)
from marketsim.services.generation.seeds import SEED_PRICES
from marketsim.services.generation.types import Bar, SeriesRequest
from marketsim.services.ingestion_service import (
    IngestionOrchestrator,
    IngestionTemplate,
    normalize_symbols,
)
from marketsim.services.market_data import PriceSource, SourcePage
from marketsim.services.storage.upserter import UpsertResult

FRIDAY = date(2024, 3, 15)

pytestmark = pytest.mark.anyio

TEMPLATE = IngestionTemplate(horizon=10, reference_date=FRIDAY)


class FailingFor(BarSource):
    """Synthetic bars, except for the symbols it is told to fail on."""

    name = "failing"

    def __init__(self, *bad: str):
        self.bad = set(bad)
        self.inner = SyntheticBarSource()
        self.seen: List[str] = []

    async def bars_for(self, request: SeriesRequest, rng: Optional[np.random.Generator] = None) -> List[Bar]:
        self.seen.append(request.symbol)
        if request.symbol in self.bad:
            raise RuntimeError(f"no data for {request.symbol}")
        return await self.inner.bars_for(request, rng)


class StaticListing(PriceSource):
    def __init__(self, symbols=None, error: Optional[Exception] = None):
        self.symbols = symbols or []
        self.error = error

    async def fetch_page(self, cursor: Optional[str] = None) -> SourcePage:
        if self.error is not None:
            raise self.error
        return SourcePage(items=list(self.symbols), next_cursor=None)


class CountingUpserter:
    """Records how many units are writing at the same time."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.symbols: List[str] = []

    async def upsert(self, symbol: str, bars) -> UpsertResult:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.active -= 1
        self.symbols.append(symbol)
        return UpsertResult(inserted=len(bars))


class CancelOn(FailingFor):
    """Sets the cancel event when it starts on ``trigger``."""

    def __init__(self, trigger: str, cancel: asyncio.Event):
        super().__init__()
        self.trigger = trigger
        self.cancel = cancel

    async def bars_for(self, request, rng=None):
        if request.symbol == self.trigger:
            self.cancel.set()
        await asyncio.sleep(0)
        return await super().bars_for(request, rng)


def orchestrator(store, upserter, bar_source=None, **kwargs) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        bar_source=bar_source or SyntheticBarSource(),
        upserter=upserter,
        store=store,
        concurrency=1,
        seed=7,
        **kwargs,
    )


def test_normalize_symbols():
    assert normalize_symbols([" aapl", "MSFT", "AAPL", "", None, "nvda "]) == ["AAPL", "MSFT", "NVDA"]


def test_invalid_template_is_a_config_error():
    with pytest.raises(ConfigError):
        IngestionTemplate(horizon="2W").validate()
    with pytest.raises(ConfigError):
        IngestionTemplate(horizon=-1).validate()


async def test_run_reports_counts(store, upserter):
    summary = await orchestrator(store, upserter).run(["AAPL", "MSFT", "NVDA"], TEMPLATE)

    assert summary.processed == 3
    assert summary.total_inserted == 30
    assert summary.total_updated == 0
    assert (summary.errors, summary.skipped, summary.cancelled) == (0, 0, False)
    assert summary.failures == {}
    assert await store.known_symbols() == ["AAPL", "MSFT", "NVDA"]


async def test_rerun_with_same_seed_updates_identical_rows(store, upserter):
    await orchestrator(store, upserter).run(["AAPL"], TEMPLATE)
    before = await store.fetch_range("AAPL", FRIDAY.replace(day=1), FRIDAY)

    summary = await orchestrator(store, upserter).run(["AAPL"], TEMPLATE)

    assert (summary.total_inserted, summary.total_updated) == (0, 10)
    assert await store.fetch_range("AAPL", FRIDAY.replace(day=1), FRIDAY) == before


async def test_failing_unit_does_not_stop_run(store, upserter):
    source = FailingFor("MSFT")
    summary = await orchestrator(store, upserter, bar_source=source).run(["AAPL", "MSFT", "NVDA"], TEMPLATE)

    assert source.seen == ["AAPL", "MSFT", "NVDA"]
    assert summary.processed == 2
    assert summary.errors == 1
    assert "no data for MSFT" in summary.failures["MSFT"]
    assert await store.known_symbols() == ["AAPL", "NVDA"]


async def test_cancelled_before_start_skips_everything(store, upserter):
    cancel = asyncio.Event()
    cancel.set()

    summary = await orchestrator(store, upserter, group_size=2).run(["AAPL", "MSFT", "NVDA"], TEMPLATE, cancel)

    assert summary.cancelled is True
    assert summary.skipped == 3
    assert summary.processed == 0
    assert await store.known_symbols() == []


async def test_symbol_already_in_flight_is_skipped(store, upserter):
    ingestion_service._IN_FLIGHT.add("MSFT")
    try:
        summary = await orchestrator(store, upserter).run(["AAPL", "MSFT"], TEMPLATE)
    finally:
        ingestion_service._IN_FLIGHT.discard("MSFT")

    assert summary.processed == 1
    assert summary.skipped == 1
    assert summary.errors == 0
    assert "MSFT" not in ingestion_service._IN_FLIGHT


async def test_groups_cover_every_symbol(store, upserter):
    symbols = ["AAPL", "MSFT", "NVDA", "AMD", "INTC"]
    source = FailingFor()

    summary = await orchestrator(store, upserter, bar_source=source, group_size=2).run(symbols, TEMPLATE)

    assert summary.processed == 5
    assert source.seen == symbols
    assert not ingestion_service._IN_FLIGHT


async def test_resolve_prefers_listing(store, upserter):
    runner = orchestrator(store, upserter, symbol_source=StaticListing(["spy", "qqq"]))
    assert await runner.resolve_symbols() == ["SPY", "QQQ"]
    assert await runner.resolve_symbols(["aapl"]) == ["AAPL"]


async def test_resolve_falls_back_to_store_and_seeds(store, upserter):
    await orchestrator(store, upserter).run(["ZZZZ"], TEMPLATE)
    runner = orchestrator(store, upserter, symbol_source=StaticListing(error=RuntimeError("listing down")))

    resolved = await runner.resolve_symbols()

    assert resolved[0] == "ZZZZ"
    assert set(SEED_PRICES) <= set(resolved)
    assert len(resolved) == len(set(resolved))


def test_bar_source_factory():
    assert isinstance(get_bar_source("synthetic"), SyntheticBarSource)
    assert isinstance(get_bar_source("polygon"), ProviderBarSource)
    with pytest.raises(ValueError):
        get_bar_source("carrier-pigeon")


async def test_concurrent_units_aggregate_counts(store):
    symbols = ["AAPL", "MSFT", "NVDA", "AMD", "INTC", "META", "AMZN"]
    writer = CountingUpserter()
    runner = IngestionOrchestrator(
        bar_source=SyntheticBarSource(),
        upserter=writer,
        store=store,
        group_size=3,
        concurrency=2,
        seed=7,
    )

    summary = await runner.run(symbols, TEMPLATE)

    assert summary.processed == 7
    assert summary.total_inserted == 70
    assert (summary.errors, summary.skipped) == (0, 0)
    assert sorted(writer.symbols) == sorted(symbols)
    assert writer.peak == 2
    assert not ingestion_service._IN_FLIGHT


async def test_cancel_during_first_group(store):
    cancel = asyncio.Event()
    source = CancelOn("MSFT", cancel)
    writer = CountingUpserter()
    runner = IngestionOrchestrator(
        bar_source=source,
        upserter=writer,
        store=store,
        group_size=4,
        concurrency=2,
        seed=7,
    )

    summary = await runner.run(["AAPL", "MSFT", "NVDA", "AMD", "INTC", "META"], TEMPLATE, cancel)

    assert sorted(writer.symbols) == ["AAPL", "MSFT"]
    assert summary.processed == 2
    assert summary.skipped == 4
    assert summary.cancelled is True
    assert summary.errors == 0
    assert source.seen == ["AAPL", "MSFT"]
    assert not ingestion_service._IN_FLIGHT
