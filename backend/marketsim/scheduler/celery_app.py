from celery import Celery
from celery.schedules import crontab

from marketsim.core.config import settings

app = Celery("marketsim")
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = False

app.autodiscover_tasks(["marketsim"])

app.conf.beat_schedule = {
    "ingest-daily-bars": {
        "task": "marketsim.tasks.market_data.ingest_daily_bars",
        "schedule": crontab(
            day_of_week="mon-fri",
            hour=settings.DAILY_INGEST_HOUR,
            minute=settings.DAILY_INGEST_MINUTE,
        ),
    },
    "refresh-intraday-bars": {
        "task": "marketsim.tasks.market_data.refresh_intraday_bars",
        "schedule": crontab(
            hour=settings.INTRADAY_REFRESH_HOUR,
            minute=settings.INTRADAY_REFRESH_MINUTE,
        ),
    },
    "backfill-full-history": {
        "task": "marketsim.tasks.market_data.backfill_full_history",
        "schedule": crontab(
            day_of_week="sun",
            hour=settings.WEEKLY_BACKFILL_HOUR,
            minute=0,
        ),
    },
}
