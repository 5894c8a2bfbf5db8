#!/usr/bin/env python3
"""
Move the bars table forward to a partitioned, compressed hypertable.

Usage:
    python scripts/migrate_timeseries.py [--target partitioned_with_compression_policy] [--stats]
"""

import asyncio
import logging
import os
import sys
from argparse import ArgumentParser

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from marketsim.core.database import close_db
from marketsim.core.exceptions import StoreMigrationError
from marketsim.core.logging import setup_logging
from marketsim.services.storage.store import TableState, TimeSeriesStore

logger = logging.getLogger(__name__)


async def migrate(target: TableState, show_stats: bool) -> TableState:
    store = TimeSeriesStore()
    try:
        before = await store.detect_state()
        logger.info(f"Current state: {before.value}")
        after = await store.migrate(target)
        logger.info(f"Final state: {after.value}")

        if show_stats:
            for key, value in (await store.storage_stats()).items():
                logger.info(f"  {key}: {value}")
        return after
    finally:
        await close_db()


def main():
    parser = ArgumentParser(description="Migrate the bars table to TimescaleDB")
    parser.add_argument(
        "--target",
        choices=[state.value for state in TableState if state != TableState.UNINITIALIZED],
        default=TableState.PARTITIONED_WITH_COMPRESSION_POLICY.value,
        help="State to migrate to (default: partitioned_with_compression_policy)"
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print row, chunk and compression statistics afterwards"
    )
    args = parser.parse_args()

    setup_logging()
    target = TableState(args.target)
    try:
        result = asyncio.run(migrate(target, args.stats))
    except StoreMigrationError as e:
        logger.error(f"✗ Migration failed: {e}")
        sys.exit(1)

    if result.rank >= target.rank:
        logger.info(f"✓ Table is at {result.value}")
    else:
        logger.warning(f"Table stopped at {result.value} (TimescaleDB not available?)")


if __name__ == "__main__":
    main()
