"""
Outreach job runner - one scheduler tick.

Usage:
    python -m daily_outreach.run_jobs

    # Schedule via cron, every minute:
    * * * * * cd /srv/daily-outreach && .venv/bin/python -m daily_outreach.run_jobs >> outreach-jobs.log 2>&1
"""
import asyncio
import logging
import sys

from daily_outreach.config import settings
from daily_outreach.database import async_session, init_db
from daily_outreach.services.scheduler_service import OutreachScheduler

logger = logging.getLogger("daily_outreach.run_jobs")


async def run_tick() -> dict:
    await init_db()
    async with async_session() as session:
        scheduler = OutreachScheduler(session)
        return await scheduler.run_due_jobs()


def main() -> int:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEV_MODE else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        summary = asyncio.run(run_tick())
    except Exception:
        logger.exception("Outreach job tick failed")
        return 1

    logger.info(f"Outreach job tick finished: {summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
