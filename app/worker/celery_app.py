"""Celery application and beat schedule for snapshot generation."""

import logging
from celery import Celery
from celery.schedules import crontab

from app.config import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

DEFAULT_RUN_TIME = (6, 0)

celery_app = Celery(
    "agency_reports",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,
    imports=("app.worker.tasks",),
)


def parse_run_time(value: str):
    """Parse HH:MM into (hour, minute), falling back to 06:00."""
    try:
        hour, minute = map(int, value.split(":"))
    except ValueError:
        logger.warning(f"Invalid SNAPSHOT_RUN_TIME_HHMM {value!r}, using 06:00")
        return DEFAULT_RUN_TIME
    if not (0 <= hour < 24 and 0 <= minute < 60):
        logger.warning(f"SNAPSHOT_RUN_TIME_HHMM {value!r} out of range, using 06:00")
        return DEFAULT_RUN_TIME
    return hour, minute


def build_beat_schedule(run_time: str, run_day: int) -> dict:
    """Monthly generation on ``run_day`` at ``run_time``, retention sweep nightly at 03:00."""
    hour, minute = parse_run_time(run_time)
    return {
        "monthly-snapshots": {
            "task": "app.worker.tasks.generate_monthly_snapshots",
            "schedule": crontab(hour=hour, minute=minute, day_of_month=run_day),
        },
        "daily-retention-sweep": {
            "task": "app.worker.tasks.sweep_expired_snapshots",
            "schedule": crontab(hour=3, minute=0),
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule(settings.snapshot_run_time_hhmm, settings.snapshot_run_day)
