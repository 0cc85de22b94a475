import logging

from apscheduler.schedulers.blocking import BlockingScheduler

from reportloader.config import Settings
from reportloader.pipeline import run_once


logger = logging.getLogger(__name__)


def _run_daily_pull(settings: Settings) -> None:
    result = run_once(settings)
    extra = {
        "target_date": result.target_date.isoformat() if result.target_date else None,
        "report_id": result.report_id,
        "status": result.status,
    }
    if result.status == "failed":
        logger.error("scheduled report pull failed", extra={**extra, "error": result.error})
        return
    logger.info("scheduled report pull completed", extra={**extra, "row_count": result.row_count})


def start_scheduler(settings: Settings, *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_pull,
        "cron",
        args=[settings],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id=f"{settings.app_name}_daily_pull",
        replace_existing=True,
        max_instances=1,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_pull(settings)

    scheduler.start()
