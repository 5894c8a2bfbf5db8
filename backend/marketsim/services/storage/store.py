"""
Time-series store lifecycle and reads.

The bars table moves forward through four states:

    UNINITIALIZED -> FLAT_TABLE -> PARTITIONED -> PARTITIONED_WITH_COMPRESSION_POLICY

Partitioning and compression are TimescaleDB features (hypertable chunks on
``trading_day``, segment-by ``symbol``, ordered by
``trading_day, timestamp``). On any other dialect, or on a
PostgreSQL server without the extension, the table stays a flat table.
Every transition checks the current state first, so re-running is a no-op.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import distinct, func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from marketsim.core.config import settings
from marketsim.core.database import engine as default_engine
from marketsim.core.exceptions import StoreMigrationError
from marketsim.models.bar import DAILY_TIMESTAMP_SENTINEL, PriceBar
from marketsim.services.generation.types import Bar, Granularity
from marketsim.services.storage.rows import KEY_COLUMNS, row_to_bar

logger = logging.getLogger(__name__)


class TableState(str, Enum):
    UNINITIALIZED = "uninitialized"
    FLAT_TABLE = "flat_table"
    PARTITIONED = "partitioned"
    PARTITIONED_WITH_COMPRESSION_POLICY = "partitioned_with_compression_policy"

    @property
    def rank(self) -> int:
        return list(TableState).index(self)


@dataclass(frozen=True)
class StoragePolicy:
    chunk_interval_days: int = 30
    compress_after_days: int = 7
    segment_by: str = "symbol"
    order_by: str = "trading_day, timestamp"

    @classmethod
    def from_settings(cls) -> "StoragePolicy":
        return cls(
            chunk_interval_days=settings.CHUNK_INTERVAL_DAYS,
            compress_after_days=settings.COMPRESS_AFTER_DAYS,
        )


class TimeSeriesStore:
    """Owns the bars table: schema state transitions and range queries."""

    def __init__(self, engine: Optional[AsyncEngine] = None, policy: Optional[StoragePolicy] = None):
        self.engine = engine or default_engine
        self.policy = policy or StoragePolicy.from_settings()
        self.table = PriceBar.__table__
        self.table_name = PriceBar.__tablename__

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def _quoted_table(self) -> str:
        return self.engine.dialect.identifier_preparer.quote(self.table_name)

    # -- state -----------------------------------------------------------

    async def _table_exists(self, conn: AsyncConnection) -> bool:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(self.table_name))

    async def _scalar(self, conn: AsyncConnection, sql: str, **params):
        return (await conn.execute(text(sql), params)).scalar()

    async def _timescale_installed(self, conn: AsyncConnection) -> bool:
        if self.dialect_name != "postgresql":
            return False
        found = await self._scalar(conn, "SELECT 1 FROM pg_extension WHERE extname = 'timescaledb'")
        return found is not None

    async def _timescale_available(self, conn: AsyncConnection) -> bool:
        if self.dialect_name != "postgresql":
            return False
        found = await self._scalar(conn, "SELECT 1 FROM pg_available_extensions WHERE name = 'timescaledb'")
        return found is not None

    async def detect_state(self) -> TableState:
        async with self.engine.connect() as conn:
            if not await self._table_exists(conn):
                return TableState.UNINITIALIZED
            if not await self._timescale_installed(conn):
                return TableState.FLAT_TABLE

            hypertable = await self._scalar(
                conn,
                "SELECT 1 FROM timescaledb_information.hypertables WHERE hypertable_name = :table",
                table=self.table_name,
            )
            if hypertable is None:
                return TableState.FLAT_TABLE

            policy = await self._scalar(
                conn,
                "SELECT 1 FROM timescaledb_information.jobs "
                "WHERE proc_name = 'policy_compression' AND hypertable_name = :table",
                table=self.table_name,
            )
            if policy is None:
                return TableState.PARTITIONED
            return TableState.PARTITIONED_WITH_COMPRESSION_POLICY

    # -- transitions -----------------------------------------------------

    async def initialize(self) -> TableState:
        """Create the flat table if it does not exist."""
        state = await self.detect_state()
        if state != TableState.UNINITIALIZED:
            logger.info(f"Table {self.table_name} already exists ({state.value})")
            return state

        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: self.table.create(sync_conn, checkfirst=True))
        logger.info(f"Created table {self.table_name}")
        return TableState.FLAT_TABLE

    async def _primary_key_columns(self, conn: AsyncConnection) -> List[str]:
        result = await conn.execute(
            text(
                "SELECT kcu.column_name FROM information_schema.table_constraints tc "
                "JOIN information_schema.key_column_usage kcu "
                "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
                "WHERE tc.table_name = :table AND tc.constraint_type = 'PRIMARY KEY' "
                "ORDER BY kcu.ordinal_position"
            ),
            {"table": self.table_name},
        )
        return [row[0] for row in result.all()]

    async def _repair_primary_key(self, conn: AsyncConnection) -> None:
        """Legacy tables keyed on a single column get the composite key the hypertable needs."""
        columns = await self._primary_key_columns(conn)
        if columns == list(KEY_COLUMNS):
            return

        logger.warning(f"Primary key of {self.table_name} is {columns}, rebuilding as {list(KEY_COLUMNS)}")
        constraint = await self._scalar(
            conn,
            "SELECT constraint_name FROM information_schema.table_constraints "
            "WHERE table_name = :table AND constraint_type = 'PRIMARY KEY'",
            table=self.table_name,
        )
        quote = self.engine.dialect.identifier_preparer.quote
        if constraint:
            await conn.execute(text(f"ALTER TABLE {self._quoted_table} DROP CONSTRAINT {quote(constraint)}"))
        await conn.execute(
            text(f'UPDATE {self._quoted_table} SET "timestamp" = :sentinel WHERE "timestamp" IS NULL'),
            {"sentinel": DAILY_TIMESTAMP_SENTINEL},
        )
        await conn.execute(text(f'ALTER TABLE {self._quoted_table} ALTER COLUMN "timestamp" SET NOT NULL'))
        key = ", ".join(quote(col) for col in KEY_COLUMNS)
        await conn.execute(text(f"ALTER TABLE {self._quoted_table} ADD PRIMARY KEY ({key})"))

    async def convert_to_partitioned(self) -> TableState:
        """Turn the flat table into a hypertable chunked on ``trading_day``, keeping every row."""
        state = await self.detect_state()
        if state == TableState.UNINITIALIZED:
            raise StoreMigrationError(f"Table {self.table_name} does not exist; initialize it first")
        if state.rank >= TableState.PARTITIONED.rank:
            logger.info(f"Table {self.table_name} is already partitioned")
            return state

        async with self.engine.connect() as conn:
            available = await self._timescale_available(conn)
        if not available:
            logger.warning(
                f"TimescaleDB is not available on {self.dialect_name}; {self.table_name} stays a flat table"
            )
            return TableState.FLAT_TABLE

        interval = int(self.policy.chunk_interval_days)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS timescaledb CASCADE"))
                rows_before = await self._scalar(conn, f"SELECT COUNT(*) FROM {self._quoted_table}")
                await self._repair_primary_key(conn)
                await conn.execute(
                    text(
                        "SELECT create_hypertable(CAST(:table AS regclass), 'trading_day', "
                        f"chunk_time_interval => INTERVAL '{interval} days', "
                        "migrate_data => true, if_not_exists => true)"
                    ),
                    {"table": self.table_name},
                )
                rows_after = await self._scalar(conn, f"SELECT COUNT(*) FROM {self._quoted_table}")
                if rows_before != rows_after:
                    raise StoreMigrationError(
                        f"Row count changed during conversion: {rows_before} -> {rows_after}"
                    )
        except SQLAlchemyError as e:
            raise StoreMigrationError(f"Failed to convert {self.table_name} to a hypertable: {e}") from e

        logger.info(
            f"Converted {self.table_name} to a hypertable ({interval}-day chunks, {rows_after} rows migrated)"
        )
        return TableState.PARTITIONED

    def compression_settings_sql(self) -> str:
        """Every primary key column must be a segment-by or order-by column."""
        return (
            f"ALTER TABLE {self._quoted_table} SET ("
            "timescaledb.compress, "
            f"timescaledb.compress_segmentby = '{self.policy.segment_by}', "
            f"timescaledb.compress_orderby = '{self.policy.order_by}')"
        )

    async def enable_compression(self) -> TableState:
        """Enable native compression and schedule the compression policy."""
        state = await self.detect_state()
        if state == TableState.PARTITIONED_WITH_COMPRESSION_POLICY:
            logger.info(f"Compression policy already active on {self.table_name}")
            return state
        if state != TableState.PARTITIONED:
            raise StoreMigrationError(
                f"Table {self.table_name} must be partitioned before compression (state: {state.value})"
            )

        after_days = int(self.policy.compress_after_days)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(self.compression_settings_sql()))
                await conn.execute(
                    text(
                        f"SELECT add_compression_policy(CAST(:table AS regclass), INTERVAL '{after_days} days', "
                        "if_not_exists => true)"
                    ),
                    {"table": self.table_name},
                )
        except SQLAlchemyError as e:
            raise StoreMigrationError(f"Failed to enable compression on {self.table_name}: {e}") from e

        logger.info(f"Compression enabled on {self.table_name}: chunks older than {after_days} days")
        return TableState.PARTITIONED_WITH_COMPRESSION_POLICY

    async def migrate(
        self, target: TableState = TableState.PARTITIONED_WITH_COMPRESSION_POLICY
    ) -> TableState:
        """Drive the table forward to ``target``. Never moves a table backward."""
        state = await self.detect_state()
        if state.rank >= target.rank:
            logger.info(f"Table {self.table_name} is at {state.value}; nothing to do for {target.value}")
            return state

        if state == TableState.UNINITIALIZED:
            state = await self.initialize()
        if target.rank >= TableState.PARTITIONED.rank and state == TableState.FLAT_TABLE:
            state = await self.convert_to_partitioned()
            if state == TableState.FLAT_TABLE:
                return state
        if target == TableState.PARTITIONED_WITH_COMPRESSION_POLICY and state == TableState.PARTITIONED:
            state = await self.enable_compression()
        return state

    # -- reads -----------------------------------------------------------

    async def fetch_range(
        self,
        symbol: str,
        start: date,
        end: date,
        granularity: Granularity = Granularity.DAILY,
    ) -> List[Bar]:
        """Bars for ``symbol`` with ``start <= trading_day <= end``, oldest first."""
        stmt = (
            select(self.table)
            .where(
                self.table.c.symbol == symbol,
                self.table.c.trading_day >= start,
                self.table.c.trading_day <= end,
                self.table.c.granularity == Granularity(granularity).value,
            )
            .order_by(self.table.c.trading_day, self.table.c.timestamp)
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return [row_to_bar(row) for row in result.mappings().all()]

    async def fetch_frame(
        self,
        symbol: str,
        start: date,
        end: date,
        granularity: Granularity = Granularity.DAILY,
    ) -> pd.DataFrame:
        bars = await self.fetch_range(symbol, start, end, granularity)
        columns = ["symbol", "trading_day", "timestamp", "open", "high", "low", "close", "adjusted_close", "volume"]
        if not bars:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame([{col: getattr(bar, col) for col in columns} for bar in bars], columns=columns)

    async def known_symbols(self) -> List[str]:
        stmt = select(self.table.c.symbol).distinct().order_by(self.table.c.symbol)
        async with self.engine.connect() as conn:
            if not await self._table_exists(conn):
                return []
            result = await conn.execute(stmt)
            return [row[0] for row in result.all()]

    async def storage_stats(self) -> Dict[str, object]:
        """Row counts and, on TimescaleDB, size, chunk and compression figures."""
        state = await self.detect_state()
        stats: Dict[str, object] = {"table": self.table_name, "state": state.value}
        if state == TableState.UNINITIALIZED:
            return stats

        summary = select(
            func.count(),
            func.count(distinct(self.table.c.symbol)),
            func.min(self.table.c.trading_day),
            func.max(self.table.c.trading_day),
        )
        async with self.engine.connect() as conn:
            total, symbols, first_day, last_day = (await conn.execute(summary)).one()
            stats.update(rows=total, symbols=symbols, first_day=first_day, last_day=last_day)

            if state.rank < TableState.PARTITIONED.rank:
                return stats

            stats["total_bytes"] = await self._scalar(
                conn, "SELECT hypertable_size(CAST(:table AS regclass))", table=self.table_name
            )
            stats["chunks"] = await self._scalar(
                conn,
                "SELECT COUNT(*) FROM timescaledb_information.chunks WHERE hypertable_name = :table",
                table=self.table_name,
            )
            if state == TableState.PARTITIONED_WITH_COMPRESSION_POLICY:
                row = (await conn.execute(
                    text(
                        "SELECT before_compression_total_bytes, after_compression_total_bytes "
                        "FROM hypertable_compression_stats(CAST(:table AS regclass))"
                    ),
                    {"table": self.table_name},
                )).first()
                if row and row[0]:
                    before, after = int(row[0]), int(row[1] or 0)
                    stats.update(
                        before_compression_bytes=before,
                        after_compression_bytes=after,
                        compression_savings_pct=round((1 - after / before) * 100, 2),
                    )
        return stats
