import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from marketsim.core.config import settings
from marketsim.core.database import close_db
from marketsim.core.exceptions import ConfigError, GenerationError
from marketsim.services.bar_sources import BarSource, get_bar_source
from marketsim.services.calendar import classify_symbol
from marketsim.services.generation.seeds import SEED_PRICES
from marketsim.services.generation.types import Horizon, SeriesRequest
from marketsim.services.market_data import PriceSource, RateLimitedFetcher, get_symbol_source
from marketsim.services.storage.store import TimeSeriesStore
from marketsim.services.storage.upserter import BatchUpserter

logger = logging.getLogger(__name__)

# Symbols with a unit currently running, across every orchestrator in this process
_IN_FLIGHT: Set[str] = set()


@dataclass(frozen=True)
class IngestionTemplate:
    """The per-symbol request shape for one run."""

    horizon: Horizon = "1Y"
    include_intraday: bool = False
    fill_non_trading_days: bool = False
    reference_date: Optional[date] = None
    intraday_days: int = 7

    @classmethod
    def from_settings(cls, horizon: Optional[Horizon] = None, include_intraday: bool = False) -> "IngestionTemplate":
        return cls(
            horizon=settings.DEFAULT_HORIZON if horizon is None else horizon,
            include_intraday=include_intraday,
            intraday_days=settings.INTRADAY_DAYS,
        )

    def request_for(self, symbol: str) -> SeriesRequest:
        return SeriesRequest(
            symbol=symbol,
            asset_class=classify_symbol(symbol),
            horizon=self.horizon,
            include_intraday=self.include_intraday,
            fill_non_trading_days=self.fill_non_trading_days,
            reference_date=self.reference_date,
            intraday_days=self.intraday_days,
        )

    def validate(self) -> None:
        try:
            self.request_for("VALIDATE")
        except GenerationError as e:
            raise ConfigError(f"Invalid ingestion template: {e}") from e


@dataclass
class IngestionSummary:
    processed: int = 0
    total_inserted: int = 0
    total_updated: int = 0
    errors: int = 0
    skipped: int = 0
    cancelled: bool = False
    rejected_rows: int = 0
    failed_batches: int = 0
    duration_sec: float = 0.0
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Strip, upper-case and de-duplicate, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for symbol in symbols:
        cleaned = (symbol or "").strip().upper()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class IngestionOrchestrator:
    """
    Drives bar generation and storage for a list of symbols.

    Symbols are processed in groups; inside a group up to ``concurrency``
    units run at once. A unit is one symbol: fetch or generate its bars,
    then upsert them. A failing unit is recorded in the summary and never
    stops the run.
    """

    def __init__(
        self,
        bar_source: Optional[BarSource] = None,
        upserter: Optional[BatchUpserter] = None,
        store: Optional[TimeSeriesStore] = None,
        symbol_source: Optional[PriceSource] = None,
        group_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        self.bar_source = bar_source or get_bar_source()
        self.upserter = upserter or BatchUpserter()
        self.store = store or TimeSeriesStore()
        self.symbol_source = symbol_source
        self.group_size = group_size or settings.INGEST_GROUP_SIZE
        self.concurrency = concurrency or settings.INGEST_CONCURRENCY
        self.seed = settings.GENERATION_SEED if seed is None else seed

    async def resolve_symbols(self, symbols: Optional[Iterable[str]] = None) -> List[str]:
        """Explicit symbols if given, else the provider listing, else store symbols plus seed symbols."""
        explicit = normalize_symbols(symbols or [])
        if explicit:
            return explicit

        if self.symbol_source is not None:
            try:
                listed = normalize_symbols(await self.symbol_source.fetch_all())
                if listed:
                    return listed
                logger.warning("Symbol source returned no symbols, falling back to store")
            except Exception as e:
                logger.error(f"Symbol listing failed, falling back to store: {e}")

        stored = await self.store.known_symbols()
        return normalize_symbols(list(stored) + sorted(SEED_PRICES))

    async def _run_unit(
        self,
        symbol: str,
        template: IngestionTemplate,
        rng: np.random.Generator,
        semaphore: asyncio.Semaphore,
        summary: IngestionSummary,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                summary.skipped += 1
                summary.cancelled = True
                return
            if symbol in _IN_FLIGHT:
                logger.warning(f"Skipping {symbol}: ingestion already in progress")
                summary.skipped += 1
                return

            _IN_FLIGHT.add(symbol)
            try:
                request = template.request_for(symbol)
                bars = await self.bar_source.bars_for(request, rng)
                result = await self.upserter.upsert(symbol, bars)
            except Exception as e:
                summary.errors += 1
                summary.failures[symbol] = str(e)
                logger.error(f"Error processing {symbol}: {e}")
                return
            finally:
                _IN_FLIGHT.discard(symbol)

        summary.total_inserted += result.inserted
        summary.total_updated += result.updated
        summary.rejected_rows += result.rejected_rows
        summary.failed_batches += result.failed_batches
        if result.failed_batches:
            summary.errors += 1
            summary.failures[symbol] = "; ".join(result.errors[-3:])
            return
        summary.processed += 1

    async def run(
        self,
        symbols: Optional[Iterable[str]] = None,
        template: Optional[IngestionTemplate] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionSummary:
        template = template or IngestionTemplate.from_settings()
        template.validate()

        started = time.monotonic()
        resolved = await self.resolve_symbols(symbols)
        summary = IngestionSummary()
        total = len(resolved)
        logger.info(
            f"Starting ingestion of {total} symbols (horizon={template.horizon}, "
            f"intraday={template.include_intraday}, source={self.bar_source.name})"
        )

        child_seeds = np.random.SeedSequence(self.seed).spawn(total)
        semaphore = asyncio.Semaphore(self.concurrency)

        for offset in range(0, total, self.group_size):
            if cancel_event is not None and cancel_event.is_set():
                summary.skipped += total - offset
                summary.cancelled = True
                break

            group = resolved[offset:offset + self.group_size]
            await asyncio.gather(*[
                self._run_unit(
                    symbol,
                    template,
                    np.random.default_rng(child_seeds[offset + index]),
                    semaphore,
                    summary,
                    cancel_event,
                )
                for index, symbol in enumerate(group)
            ])
            logger.info(
                f"Progress: {min(offset + self.group_size, total)}/{total} symbols "
                f"({summary.total_inserted} inserted, {summary.total_updated} updated, {summary.errors} errors)"
            )

        summary.duration_sec = round(time.monotonic() - started, 3)
        logger.info(
            f"Ingestion finished: {summary.processed} processed, {summary.errors} errors, "
            f"{summary.skipped} skipped in {summary.duration_sec}s"
        )
        return summary


async def run_ingestion(
    symbols: Optional[Iterable[str]] = None,
    horizon: Optional[Horizon] = None,
    include_intraday: bool = False,
    cancel_event: Optional[asyncio.Event] = None,
) -> dict:
    """Run one ingestion with configured collaborators and return the summary as a dict."""
    template = IngestionTemplate.from_settings(horizon=horizon, include_intraday=include_intraday)
    # One fetcher so listing and bar calls share the provider rate limit
    fetcher = RateLimitedFetcher()
    orchestrator = IngestionOrchestrator(
        bar_source=get_bar_source(fetcher=fetcher),
        symbol_source=get_symbol_source(fetcher=fetcher),
    )
    try:
        summary = await orchestrator.run(symbols, template, cancel_event)
    finally:
        await fetcher.aclose()
        # The engine's pool is bound to this event loop
        await close_db()
    return summary.to_dict()
