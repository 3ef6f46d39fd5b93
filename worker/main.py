"""
Background worker with scheduled jobs.
Cleans up idle chat sessions and flags overdue invoices.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add server directory to path to import shared models and services
sys.path.append(str(Path(__file__).parent.parent / "server"))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.services.redis_client import close_redis, init_redis
from app.utils.retry import with_retry
from worker.config import settings
from worker.jobs.invoice_overdue_job import mark_overdue_invoices_job
from worker.jobs.session_cleanup_job import cleanup_chat_sessions

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> AsyncIOScheduler:
    """Scheduler with the worker's jobs registered (not started)."""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        cleanup_chat_sessions,
        trigger=IntervalTrigger(minutes=settings.SESSION_CLEANUP_INTERVAL_MINUTES),
        id="cleanup_chat_sessions",
        name="Remove idle closed chat sessions",
        replace_existing=True,
    )

    scheduler.add_job(
        mark_overdue_invoices_job,
        trigger=CronTrigger.from_crontab(settings.INVOICE_OVERDUE_CRON),
        id="mark_overdue_invoices",
        name="Flag overdue invoices",
        replace_existing=True,
    )

    return scheduler


async def main():
    """Initialize and run the worker scheduler."""
    logger.info("Starting background worker...")

    await with_retry(init_redis, max_retries=5, operation_name="Redis connection")

    scheduler = build_scheduler()
    scheduler.start()
    logger.info(f"Scheduler started. Jobs: {[job.id for job in scheduler.get_jobs()]}")

    # Keep the worker running
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down worker...")
        scheduler.shutdown()
        await close_redis()


if __name__ == "__main__":
    asyncio.run(main())
