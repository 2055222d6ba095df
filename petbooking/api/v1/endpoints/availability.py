from datetime import date
from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.api.deps.calendar import get_calendar
from petbooking.api.deps.database import get_db
from petbooking.core.config import settings
from petbooking.models.staff import Staff
from petbooking.schemas.availability import (
    AnchorToggleRequest,
    AvailabilityMatrixResponse,
    AvailabilitySlotRead,
    AvailabilityUpdateResponse,
    BulkGenerateRequest,
    BulkGenerateResponse,
    DayAvailabilityRequest,
    RollAvailabilityRequest,
    RollAvailabilityResponse,
)
from petbooking.services.availability import AvailabilityStore
from petbooking.services.slot_calendar import SlotCalendar

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _require_staff(db: AsyncSession, staff_id: int) -> Staff:
    result = await db.execute(select(Staff).where(Staff.id == staff_id))
    staff = result.scalar_one_or_none()
    if not staff:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found"
        )
    return staff


@router.get("/staff/{staff_id}", response_model=List[AvailabilitySlotRead])
async def get_staff_availability(
    staff_id: int,
    date: date = Query(..., description="Business-local date"),
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """All stored sub-slots for one staff member on one date, by time."""
    await _require_staff(db, staff_id)
    store = AvailabilityStore(db, calendar)
    return await store.get_slots_for_staff_and_date(staff_id, date)


@router.get("/matrix", response_model=AvailabilityMatrixResponse)
async def get_availability_matrix(
    date: date = Query(..., description="Business-local date"),
    staff_ids: List[int] = Query(..., description="Staff members to include"),
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Time slot by staff matrix for the admin availability screen."""
    store = AvailabilityStore(db, calendar)
    matrix = await store.day_matrix(date, staff_ids)
    return AvailabilityMatrixResponse(
        date=date, staff_ids=list(dict.fromkeys(staff_ids)), slots=matrix
    )


@router.post(
    "/generate",
    response_model=BulkGenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_availability(
    request: BulkGenerateRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Create missing sub-slots over a date range. Safe to repeat."""
    await _require_staff(db, request.staff_id)
    store = AvailabilityStore(db, calendar)
    inserted = await store.bulk_generate(
        request.staff_id,
        request.start_date,
        request.end_date,
        start_time=request.start_time,
        end_time=request.end_time,
        default_available=request.default_available,
    )
    return BulkGenerateResponse(staff_id=request.staff_id, inserted=inserted)


@router.post("/toggle-anchor", response_model=AvailabilityUpdateResponse)
async def toggle_anchor(
    request: AnchorToggleRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Open or close the three sub-slots behind one anchor."""
    await _require_staff(db, request.staff_id)
    store = AvailabilityStore(db, calendar)
    affected = await store.toggle_anchor(
        request.staff_id, request.date, request.anchor, request.available
    )
    return AvailabilityUpdateResponse(
        staff_id=request.staff_id,
        date=request.date,
        available=request.available,
        affected=affected,
        noop=affected == 0,
    )


@router.post("/day", response_model=AvailabilityUpdateResponse)
async def set_day_availability(
    request: DayAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Open or close a whole business day for one staff member."""
    await _require_staff(db, request.staff_id)
    store = AvailabilityStore(db, calendar)
    affected = await store.set_day_availability(
        request.staff_id, request.date, request.available
    )
    return AvailabilityUpdateResponse(
        staff_id=request.staff_id,
        date=request.date,
        available=request.available,
        affected=affected,
        noop=affected == 0,
    )


@router.post("/roll", response_model=RollAvailabilityResponse)
async def roll_availability(
    request: RollAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Generate availability for every active staff member up to the horizon."""
    store = AvailabilityStore(db, calendar)
    horizon = request.horizon_days or settings.AVAILABILITY_HORIZON_DAYS
    summary = await store.roll_availability(horizon)
    logger.info(
        "Availability rolled on demand",
        horizon_days=horizon,
        inserted=summary["inserted"],
        staff_count=summary["staff_count"],
    )
    return RollAvailabilityResponse(**summary)
