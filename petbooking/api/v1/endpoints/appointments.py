import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.api.deps.calendar import get_calendar
from petbooking.api.deps.database import get_db
from petbooking.core.exceptions import BookingError
from petbooking.models.appointment import AppointmentStatus
from petbooking.schemas.appointment import (
    AppointmentRead,
    BookingRequest,
    BookingResult,
    CancelRequest,
    RescheduleRequest,
    StatusTransitionRequest,
)
from petbooking.services.booking import BookingOrchestrator
from petbooking.services.slot_calendar import SlotCalendar

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/", response_model=BookingResult, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    request: BookingRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """
    Book an appointment in one transaction.

    A conflict comes back as 409 with ``override_allowed``; resending the
    same request with ``override_conflicts`` books it and records why.
    """
    orchestrator = BookingOrchestrator(db, calendar)
    try:
        return await orchestrator.create_booking(request)
    except BookingError:
        raise
    except Exception as e:
        await db.rollback()
        logger.error("Unexpected booking failure", exc_info=e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create appointment",
        )


@router.get("/{appointment_id}", response_model=AppointmentRead)
async def get_appointment(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    orchestrator = BookingOrchestrator(db, calendar)
    appointment = await orchestrator.get_appointment(appointment_id)
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found"
        )
    return appointment


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
async def cancel_appointment(
    appointment_id: int,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Cancel an appointment. The row is kept with status ``cancelled``."""
    orchestrator = BookingOrchestrator(db, calendar)
    return await orchestrator.cancel_appointment(
        appointment_id, actor=request.actor, reason=request.reason
    )


@router.post("/{appointment_id}/status", response_model=AppointmentRead)
async def transition_appointment_status(
    appointment_id: int,
    request: StatusTransitionRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """Move an appointment along pending -> confirmed -> completed, or cancel it."""
    orchestrator = BookingOrchestrator(db, calendar)
    return await orchestrator.transition_status(
        appointment_id,
        AppointmentStatus(request.new_status.value),
        actor=request.actor,
        notes=request.notes,
    )


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
async def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    db: AsyncSession = Depends(get_db),
    calendar: SlotCalendar = Depends(get_calendar),
):
    """
    Move a booking to a new date and time.

    The new window is conflict-checked like a fresh booking, ignoring the
    appointment being moved. The move is logged with its reason and editor.
    """
    orchestrator = BookingOrchestrator(db, calendar)
    return await orchestrator.reschedule(
        appointment_id,
        request.date,
        request.time,
        extra_fee=request.extra_fee,
        admin_notes=request.admin_notes,
        edit_reason=request.edit_reason,
        edited_by=request.edited_by,
        allow_override=request.override_conflicts,
        allow_unavailable=request.override_availability,
    )
