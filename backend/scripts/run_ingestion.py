#!/usr/bin/env python3
"""
Generate (or fetch) bars and upsert them into the time-series store.

Usage:
    python scripts/run_ingestion.py [--symbols AAPL MSFT] [--horizon 1Y] [--intraday]
"""

import asyncio
import json
import logging
import os
import sys
from argparse import ArgumentParser

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from marketsim.core.config import settings
from marketsim.core.logging import setup_logging
from marketsim.services.calendar import NAMED_HORIZONS
from marketsim.services.ingestion_service import run_ingestion

logger = logging.getLogger(__name__)


def parse_horizon(value: str):
    """Named ranges stay strings; plain numbers are trading-day counts."""
    if value.isdigit():
        return int(value)
    if value.upper() not in NAMED_HORIZONS:
        raise ValueError(f"Unknown horizon '{value}'. Valid options: {', '.join(NAMED_HORIZONS)} or a day count")
    return value.upper()


def main():
    parser = ArgumentParser(description="Ingest market bars into the time-series store")
    parser.add_argument(
        "--symbols",
        nargs="*",
        default=None,
        help="Symbols to ingest (default: every known symbol)"
    )
    parser.add_argument(
        "--horizon",
        type=parse_horizon,
        default=settings.DEFAULT_HORIZON,
        help=f"Named range or trading-day count (default: {settings.DEFAULT_HORIZON})"
    )
    parser.add_argument(
        "--intraday",
        action="store_true",
        help="Also ingest hourly bars for the most recent trading days"
    )
    args = parser.parse_args()

    setup_logging()
    try:
        summary = asyncio.run(
            run_ingestion(args.symbols, horizon=args.horizon, include_intraday=args.intraday)
        )
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        sys.exit(2)

    print(json.dumps(summary, indent=2, default=str))

    if summary["errors"] == 0:
        logger.info(f"✓ Ingestion completed: {summary['processed']} symbols")
        sys.exit(0)
    else:
        logger.error(f"✗ Ingestion finished with {summary['errors']} failed symbols")
        sys.exit(1)


if __name__ == "__main__":
    main()
