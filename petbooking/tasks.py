import asyncio
from typing import Optional

import structlog

from petbooking.core.celery import celery_app
from petbooking.core.config import settings
from petbooking.core.database import AsyncSessionLocal
from petbooking.services.availability import AvailabilityStore

logger = structlog.get_logger(__name__)


async def _roll(horizon_days: int) -> dict:
    async with AsyncSessionLocal() as session:
        store = AvailabilityStore(session)
        return await store.roll_availability(horizon_days)


@celery_app.task(name="petbooking.tasks.roll_availability")
def roll_availability(horizon_days: Optional[int] = None) -> dict:
    """Keep every active staff member's availability generated ahead of today."""
    horizon = horizon_days or settings.AVAILABILITY_HORIZON_DAYS
    summary = asyncio.run(_roll(horizon))
    logger.info(
        "Availability rolled",
        start_date=str(summary["start_date"]),
        end_date=str(summary["end_date"]),
        staff_count=summary["staff_count"],
        inserted=summary["inserted"],
    )
    return {
        "start_date": summary["start_date"].isoformat(),
        "end_date": summary["end_date"].isoformat(),
        "staff_count": summary["staff_count"],
        "inserted": summary["inserted"],
    }
