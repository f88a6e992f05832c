"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .database import get_session
from .lifecycle import sweep_expired_registrations

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def run_registration_sweep() -> int:
    with get_session() as session:
        return sweep_expired_registrations(session)


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.enable_scheduler:
        logger.info("Scheduler disabled by configuration")
        return None
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_registration_sweep,
        "interval",
        minutes=settings.registration_sweep_minutes,
        id="registration-sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
