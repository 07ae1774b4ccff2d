"""Interval jobs for unattended ingestion (APScheduler)."""

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app import config
from app.desk import Desk
from app.errors import PipelineError

logger = structlog.get_logger(__name__)


async def _guarded(name: str, job: Callable[[], Awaitable[Any]]) -> None:
    """Run one scheduled job; a failure is logged and the schedule continues."""
    logger.info("scheduler.job_started", job=name)
    try:
        result = await job()
    except PipelineError as e:
        logger.error("scheduler.job_failed", job=name, error=str(e), error_type=e.__class__.__name__)
        return
    logger.info("scheduler.job_finished", job=name, result=result)


def build_scheduler(desk: Desk) -> AsyncIOScheduler:
    """Scheduler with the news cycle, the PR monitor and the analyst-email scan."""
    scheduler = AsyncIOScheduler()
    jobs = [
        ("news_cycle", desk.news_cycle, config.NEWS_CYCLE_MINUTES, bool(config.RSS_FEEDS)),
        ("pr_monitor", desk.pr_monitor, config.PR_MONITOR_MINUTES, bool(config.PR_MONITOR_TICKERS)),
        ("analyst_scan", desk.scan_analyst_notes, config.EMAIL_SCAN_MINUTES, bool(config.IMAP_USER)),
    ]
    for name, job, minutes, enabled in jobs:
        if not enabled or minutes <= 0:
            logger.info("scheduler.job_disabled", job=name)
            continue
        scheduler.add_job(
            _guarded,
            trigger=IntervalTrigger(minutes=minutes),
            args=[name, job],
            id=f"job_{name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("scheduler.job_scheduled", job=name, minutes=minutes)
    return scheduler


async def run_forever(desk: Desk) -> None:
    scheduler = build_scheduler(desk)
    scheduler.start()
    logger.info("scheduler.started", jobs=len(scheduler.get_jobs()))
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("scheduler.stopped")
