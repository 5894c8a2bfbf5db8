from marketsim.scheduler.celery_app import app
from marketsim.services.ingestion_service import run_ingestion
from marketsim.core.redis import get_redis, StreamNames
from datetime import date
from typing import List, Optional
import logging
import asyncio

logger = logging.getLogger(__name__)


def _publish_results(summary: dict, horizon: str, include_intraday: bool) -> None:
    """Publish a batch_complete event, plus an alert when any symbol failed."""
    today = str(date.today())
    try:
        r = get_redis()
        r.xadd(StreamNames.MARKET_BARS, {
            "event_type": "batch_complete",
            "date": today,
            "horizon": horizon,
            "intraday": str(include_intraday).lower(),
            "processed": str(summary["processed"]),
            "inserted": str(summary["total_inserted"]),
            "updated": str(summary["total_updated"]),
        })
    except Exception as e:
        logger.error(f"Failed to publish stream event: {e}")

    if summary["errors"]:
        logger.error(f"Ingestion errors detected: {summary['errors']}")
        try:
            r = get_redis()
            r.xadd(StreamNames.ALERTS, {
                "level": "ERROR",
                "title": "Ingestion Errors",
                "message": (
                    f"{summary['errors']} symbols failed during {horizon} ingestion: "
                    f"{', '.join(sorted(summary['failures'])[:10])}"
                ),
            })
        except Exception as e:
            logger.error(f"Failed to publish alert: {e}")


def _ingest(symbols: Optional[List[str]], horizon: str, include_intraday: bool) -> dict:
    summary = asyncio.run(run_ingestion(symbols, horizon=horizon, include_intraday=include_intraday))
    logger.info(
        f"{horizon} ingestion: {summary['processed']} symbols, "
        f"{summary['total_inserted']} inserted, {summary['total_updated']} updated"
    )
    _publish_results(summary, horizon, include_intraday)
    return {
        "status": "completed",
        "date": str(date.today()),
        "horizon": horizon,
        **{k: summary[k] for k in ("processed", "total_inserted", "total_updated", "errors", "skipped")},
    }


@app.task(name="marketsim.tasks.market_data.ingest_daily_bars")
def ingest_daily_bars(symbols: Optional[List[str]] = None):
    """
    Scheduled task to refresh one year of daily bars.
    Runs on weekdays after market close.
    """
    return _ingest(symbols, "1Y", include_intraday=False)


@app.task(name="marketsim.tasks.market_data.refresh_intraday_bars")
def refresh_intraday_bars(symbols: Optional[List[str]] = None):
    """Daily window plus hourly bars for the most recent trading days."""
    return _ingest(symbols, "1M", include_intraday=True)


@app.task(name="marketsim.tasks.market_data.backfill_full_history")
def backfill_full_history(symbols: Optional[List[str]] = None):
    """Weekly full-history backfill."""
    return _ingest(symbols, "MAX", include_intraday=False)
