from datetime import date
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.api.deps.calendar import get_calendar
from petbooking.api.deps.database import get_db
from petbooking.core.exceptions import BookingError
from petbooking.schemas.scheduling import (
    AnchorsResponse,
    ConflictCheckRequest,
    ConflictCheckResult,
    NextAvailableResponse,
    SlotGridResponse,
)
from petbooking.services.conflicts import ConflictResolver
from petbooking.services.holidays import HolidayService
from petbooking.services.slot_calendar import SlotCalendar

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/anchors", response_model=AnchorsResponse)
async def get_anchors(
    date: date = Query(..., description="Business-local date"),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Anchors shown for a day, and whether the day can be booked at all."""
    holiday = None
    if calendar.config.holiday_country:
        holiday = HolidayService.get_holiday_name(date, calendar.config.holiday_country)

    return AnchorsResponse(
        date=date,
        is_bookable=calendar.is_bookable_date(date),
        is_open=calendar.is_open_day(date),
        holiday=holiday,
        anchors=calendar.anchors_for_date(date),
    )


@router.get("/slots", response_model=SlotGridResponse)
async def get_slot_grid(
    date: date = Query(..., description="Business-local date"),
    staff_ids: List[int] = Query(..., description="Staff members the booking needs"),
    duration_minutes: int = Query(30, gt=0, description="Candidate booking length"),
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """
    Classify every sub-slot of the day for a candidate booking.

    Each slot is available, occupied (an appointment overlaps for one of the
    staff members) or unavailable (staff blocked that time).
    """
    resolver = ConflictResolver(db, calendar)
    try:
        slots = await resolver.slot_grid(date, staff_ids, duration_minutes)
    except BookingError:
        raise
    except Exception as e:
        logger.error("Slot grid failed", date=str(date), exc_info=e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load slots",
        )

    return SlotGridResponse(
        date=date,
        is_bookable=calendar.is_bookable_date(date),
        duration_minutes=duration_minutes,
        staff_ids=staff_ids,
        slots=slots,
    )


@router.post("/conflicts/check", response_model=ConflictCheckResult)
async def check_conflicts(
    request: ConflictCheckRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Advisory conflict check. The booking commit checks again."""
    resolver = ConflictResolver(db, calendar)
    return await resolver.check(request)


@router.get("/next-available", response_model=NextAvailableResponse)
async def get_next_available(
    staff_ids: List[int] = Query(..., description="Staff members the booking needs"),
    duration_minutes: int = Query(30, gt=0, description="Booking length"),
    from_date: Optional[date] = Query(None, description="First day to look at"),
    horizon_days: int = Query(7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Earliest start where every listed staff member is open and not booked."""
    resolver = ConflictResolver(db, calendar)
    slot = await resolver.next_available(
        staff_ids, duration_minutes, from_date=from_date, horizon_days=horizon_days
    )
    return NextAvailableResponse(found=slot is not None, slot=slot)
