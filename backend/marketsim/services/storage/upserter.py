import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketsim.core.config import settings
from marketsim.core.database import AsyncSessionLocal
from marketsim.core.exceptions import BarValidationError, StoreError, TransientStoreError
from marketsim.models.bar import PriceBar
from marketsim.services.generation.types import Bar
from marketsim.services.storage.rows import KEY_COLUMNS, VALUE_COLUMNS, bar_to_row

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError, asyncio.TimeoutError, OSError)


@dataclass
class UpsertResult:
    """Outcome of one ``upsert`` call. Counts are in rows except ``failed_batches``."""

    inserted: int = 0
    updated: int = 0
    rejected_rows: int = 0
    failed_batches: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0 and self.rejected_rows == 0


def insert_for_dialect(dialect_name: str):
    """The dialect-specific ``insert`` construct that supports ON CONFLICT."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreError(f"Dialect '{dialect_name}' has no ON CONFLICT upsert support")
    return insert


class BatchUpserter:
    """
    Idempotent batched writes into the bars table.

    Rows are validated, de-duplicated (last occurrence wins) and written in
    batches, one transaction per batch. A batch that fails does not affect
    the batches already committed.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        batch_size: Optional[int] = None,
        retry_backoff_sec: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.batch_size = settings.UPSERT_BATCH_SIZE if batch_size is None else batch_size
        self.retry_backoff_sec = (
            settings.STORE_RETRY_BACKOFF_SEC if retry_backoff_sec is None else retry_backoff_sec
        )
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    def _prepare(self, symbol: str, bars: Iterable[Bar], result: UpsertResult) -> List[dict]:
        rows: Dict[tuple, dict] = {}
        now = datetime.utcnow()
        for bar in bars:
            try:
                if bar.symbol != symbol:
                    raise BarValidationError(f"bar symbol {bar.symbol!r} does not match {symbol!r}")
                bar.validate()
            except BarValidationError as e:
                result.rejected_rows += 1
                result.errors.append(f"{symbol} {bar.trading_day}: {e}")
                logger.warning(f"Rejected invalid bar: {symbol} {bar.trading_day} {bar.timestamp or ''}: {e}")
                continue

            row = bar_to_row(bar, now)
            rows[(row["symbol"], row["trading_day"], row["timestamp"])] = row
        return list(rows.values())

    async def _write_batch(self, symbol: str, batch: List[dict]) -> Tuple[int, int]:
        """Probe existing keys and upsert ``batch`` in one transaction. Returns (inserted, updated)."""
        first_day = min(row["trading_day"] for row in batch)
        last_day = max(row["trading_day"] for row in batch)

        async with self.session_factory() as session:
            async with session.begin():
                probe = select(PriceBar.trading_day, PriceBar.timestamp).where(
                    PriceBar.symbol == symbol,
                    PriceBar.trading_day >= first_day,
                    PriceBar.trading_day <= last_day,
                )
                existing = {(day, ts) for day, ts in (await session.execute(probe)).all()}
                updated = sum(1 for row in batch if (row["trading_day"], row["timestamp"]) in existing)

                insert = insert_for_dialect(session.get_bind().dialect.name)
                stmt = insert(PriceBar).values(batch)
                update_cols = {col: stmt.excluded[col] for col in VALUE_COLUMNS}
                update_cols["updated_at"] = stmt.excluded.updated_at
                stmt = stmt.on_conflict_do_update(index_elements=list(KEY_COLUMNS), set_=update_cols)
                await session.execute(stmt)

        return len(batch) - updated, updated

    async def _write_with_retry(self, symbol: str, batch: List[dict]) -> Tuple[int, int]:
        try:
            return await self._write_batch(symbol, batch)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Transient store error for {symbol}, retrying batch in {self.retry_backoff_sec}s: {e}")
            await asyncio.sleep(self.retry_backoff_sec)
        try:
            return await self._write_batch(symbol, batch)
        except TRANSIENT_ERRORS as e:
            raise TransientStoreError(f"batch failed after retry: {e}") from e

    async def upsert(self, symbol: str, bars: Iterable[Bar]) -> UpsertResult:
        """
        Write ``bars`` for ``symbol``. Re-running with the same input changes
        no row counts; it only refreshes values and ``updated_at``.
        Store errors are counted in the result, never raised.
        """
        result = UpsertResult()
        rows = self._prepare(symbol, bars, result)
        if not rows:
            return result

        total_batches = (len(rows) + self.batch_size - 1) // self.batch_size
        for index in range(0, len(rows), self.batch_size):
            batch = rows[index:index + self.batch_size]
            batch_no = index // self.batch_size + 1
            try:
                inserted, updated = await self._write_with_retry(symbol, batch)
            except (SQLAlchemyError, StoreError) as e:
                result.failed_batches += 1
                result.errors.append(f"{symbol} batch {batch_no}: {e}")
                logger.error(f"Failed to store batch {batch_no}/{total_batches} for {symbol}: {e}")
                continue

            result.inserted += inserted
            result.updated += updated
            logger.debug(
                f"Upserted batch {batch_no}/{total_batches} for {symbol}: "
                f"{inserted} inserted, {updated} updated"
            )

        return result
