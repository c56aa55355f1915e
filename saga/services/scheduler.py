# saga/services/scheduler.py
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from saga.database import async_session_maker
from saga.services.search import SearchService
from saga.settings.config import settings

try:
    from zoneinfo import ZoneInfo
except Exception:
    ZoneInfo = None

scheduler: AsyncIOScheduler | None = None
logger = logging.getLogger(__name__)

RETENTION_JOB_ID = "search-analytics-retention"


def _pick_tz(name: str | None):
    tz = None
    if ZoneInfo and name:
        try:
            tz = ZoneInfo(name)
        except Exception:
            try:
                tz = ZoneInfo("Etc/UTC")
            except Exception:
                tz = None
    return tz


def _retention_trigger(tz) -> CronTrigger:
    cron_expr = (settings.RETENTION_CRON or "").strip()
    if cron_expr:
        try:
            trigger = CronTrigger.from_crontab(cron_expr, timezone=tz)
            logger.info("Retention job using RETENTION_CRON='%s' tz=%s", cron_expr, settings.APP_TZ)
            return trigger
        except ValueError:
            logger.warning("Invalid RETENTION_CRON %r; falling back to daily 03:30", cron_expr)
    return CronTrigger(hour=3, minute=30, timezone=tz)


def start_scheduler() -> AsyncIOScheduler | None:
    global scheduler
    if scheduler:
        return scheduler
    if settings.SEARCH_ANALYTICS_RETENTION_DAYS <= 0:
        logger.info("Search analytics retention disabled; scheduler not started")
        return None

    tz = _pick_tz(settings.APP_TZ)
    scheduler = AsyncIOScheduler(timezone=tz)
    scheduler.add_job(
        job_purge_search_analytics,
        _retention_trigger(tz),
        id=RETENTION_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler


def stop_scheduler() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None


async def job_purge_search_analytics(session_maker=None, now: datetime | None = None) -> int:
    """Drop analytics rows older than the retention window."""
    days = settings.SEARCH_ANALYTICS_RETENTION_DAYS
    if days <= 0:
        return 0
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    service = SearchService(session_maker or async_session_maker)
    try:
        return await service.purge_search_analytics(cutoff)
    except Exception:
        logger.exception("Search analytics retention job failed")
        return 0
