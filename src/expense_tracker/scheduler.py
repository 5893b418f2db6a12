"""In-process daily scheduling for background jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta

logger = logging.getLogger(__name__)


def next_daily_run(now: datetime, hour_utc: int, minute_utc: int = 0) -> datetime:
    """Next occurrence of hour:minute UTC strictly after now."""
    now = now.astimezone(UTC)
    candidate = datetime.combine(now.date(), time(hour_utc, minute_utc), tzinfo=UTC)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


async def run_daily(
    job: Callable[[], Awaitable[object]],
    *,
    hour_utc: int,
    minute_utc: int = 0,
    name: str = "job",
) -> None:
    """Run job every day at hour:minute UTC until cancelled.

    A failing run is logged and does not stop the schedule.
    """
    while True:
        now = datetime.now(UTC)
        run_at = next_daily_run(now, hour_utc, minute_utc)
        logger.debug("Next %s run at %s", name, run_at.isoformat())
        await asyncio.sleep((run_at - now).total_seconds())
        try:
            await job()
        except Exception:
            logger.exception("Scheduled %s failed", name)
