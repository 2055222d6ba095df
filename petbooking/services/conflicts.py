import logging
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.core.exceptions import BookingValidationError
from petbooking.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStaff
from petbooking.models.availability import StaffAvailability
from petbooking.models.service import Service
from petbooking.schemas.scheduling import (
    BusyInterval,
    ConflictCheckRequest,
    ConflictCheckResult,
    NextAvailableSlot,
    SlotState,
    SlotStatus,
    StaffAssignment,
)
from petbooking.services.slot_calendar import SlotCalendar
from petbooking.utils.dates import TimeLike, format_time, to_minutes

logger = logging.getLogger(__name__)

# staff id -> "HH:MM:SS" -> available
AvailabilityMap = dict[int, dict[str, bool]]


def intervals_overlap(
    start_a: int, end_a: int, start_b: int, end_b: int
) -> bool:
    """Half-open ``[start, end)`` overlap test."""
    return start_a < end_b and end_a > start_b


class ConflictResolver:
    """Classify a candidate booking window against appointments and availability.

    Every check runs per staff member. A staff member listed twice in one
    booking holds the same window twice and so conflicts with themselves.
    """

    def __init__(self, db: AsyncSession, calendar: Optional[SlotCalendar] = None):
        self.db = db
        self.calendar = calendar or SlotCalendar()

    async def load_busy_intervals(
        self,
        day: date,
        staff_ids: Iterable[int],
        exclude_appointment_id: Optional[int] = None,
    ) -> list[BusyInterval]:
        """Windows held on ``day`` by active appointments of the given staff."""
        unique_ids = list(dict.fromkeys(staff_ids))
        if not unique_ids:
            return []

        conditions = [
            Appointment.date == day,
            Appointment.status.in_(ACTIVE_STATUSES),
            AppointmentStaff.staff_id.in_(unique_ids),
        ]
        if exclude_appointment_id is not None:
            conditions.append(Appointment.id != exclude_appointment_id)

        query = (
            select(
                Appointment.id,
                Appointment.time,
                Appointment.duration,
                AppointmentStaff.staff_id,
            )
            .join(AppointmentStaff, AppointmentStaff.appointment_id == Appointment.id)
            .where(and_(*conditions))
            .order_by(Appointment.time, Appointment.id)
        )
        result = await self.db.execute(query)

        intervals = []
        seen = set()
        for appointment_id, start, duration, staff_id in result.all():
            # One appointment may list a staff member for both of its services
            if (appointment_id, staff_id) in seen:
                continue
            seen.add((appointment_id, staff_id))
            start_minute = to_minutes(start)
            intervals.append(
                BusyInterval(
                    staff_id=staff_id,
                    appointment_id=appointment_id,
                    start_minute=start_minute,
                    end_minute=start_minute + duration,
                )
            )
        logger.debug(
            f"Loaded {len(intervals)} busy intervals on {day} for staff {unique_ids}"
        )
        return intervals

    async def load_availability(
        self, day: date, staff_ids: Iterable[int]
    ) -> AvailabilityMap:
        unique_ids = list(dict.fromkeys(staff_ids))
        availability: AvailabilityMap = {staff_id: {} for staff_id in unique_ids}
        if not unique_ids:
            return availability

        result = await self.db.execute(
            select(
                StaffAvailability.staff_id,
                StaffAvailability.time_slot,
                StaffAvailability.available,
            ).where(
                and_(
                    StaffAvailability.staff_id.in_(unique_ids),
                    StaffAvailability.date == day,
                )
            )
        )
        for staff_id, time_slot, available in result.all():
            availability[staff_id][format_time(time_slot)] = available
        return availability

    def classify(
        self,
        day: date,
        start: TimeLike,
        duration_minutes: int,
        staff_ids: list[int],
        busy: list[BusyInterval],
        availability: AvailabilityMap,
    ) -> ConflictCheckResult:
        """Pure classification of one window.

        ``unavailable`` wins over ``occupied``: a sub-slot with no stored row
        or a row marked closed makes the window unavailable for that staff
        member regardless of appointments.
        """
        start_minute = to_minutes(start)
        end_minute = start_minute + duration_minutes
        required = self.calendar.required_sub_slots(start, duration_minutes, day)

        unavailable_staff = []
        for staff_id in dict.fromkeys(staff_ids):
            slots = availability.get(staff_id, {})
            if any(not slots.get(slot, False) for slot in required):
                unavailable_staff.append(staff_id)

        if unavailable_staff:
            return ConflictCheckResult(
                ok=False,
                status=SlotStatus.UNAVAILABLE,
                reason=(
                    f"Staff {', '.join(str(s) for s in unavailable_staff)} "
                    f"unavailable at {format_time(start)} on {day.isoformat()}"
                ),
                duration_minutes=duration_minutes,
                unavailable_staff_ids=unavailable_staff,
            )

        reasons = []
        conflicting_ids = []
        busy_staff = []

        repeated = [s for s, count in Counter(staff_ids).items() if count > 1]
        for staff_id in repeated:
            busy_staff.append(staff_id)
            reasons.append(
                f"Staff {staff_id} is assigned to both services over the same window"
            )

        for interval in busy:
            if interval.staff_id not in staff_ids:
                continue
            if intervals_overlap(
                start_minute, end_minute, interval.start_minute, interval.end_minute
            ):
                if interval.appointment_id not in conflicting_ids:
                    conflicting_ids.append(interval.appointment_id)
                if interval.staff_id not in busy_staff:
                    busy_staff.append(interval.staff_id)
                reasons.append(
                    f"Staff {interval.staff_id} already booked "
                    f"{_clock(interval.start_minute)}-"
                    f"{_clock(interval.end_minute)} "
                    f"(appointment {interval.appointment_id})"
                )

        if reasons:
            return ConflictCheckResult(
                ok=False,
                status=SlotStatus.OCCUPIED,
                reason="; ".join(reasons),
                duration_minutes=duration_minutes,
                conflicting_appointment_ids=conflicting_ids,
                busy_staff_ids=busy_staff,
            )

        return ConflictCheckResult(ok=True, duration_minutes=duration_minutes)

    async def duration_for_services(self, service_ids: list[int]) -> int:
        """Sum of default durations, counting a repeated service once per use."""
        unique_ids = list(dict.fromkeys(service_ids))
        result = await self.db.execute(
            select(Service).where(Service.id.in_(unique_ids))
        )
        services = {service.id: service for service in result.scalars().all()}
        missing = [sid for sid in unique_ids if sid not in services]
        if missing:
            raise BookingValidationError(
                f"Service(s) not found: {missing}", service_ids=missing
            )
        return sum(services[sid].default_duration for sid in service_ids)

    async def validate(
        self,
        day: date,
        start_time: TimeLike,
        assignments: list[StaffAssignment],
        allow_override: bool = False,
        allow_unavailable: bool = False,
        duration_minutes: Optional[int] = None,
        exclude_appointment_id: Optional[int] = None,
    ) -> ConflictCheckResult:
        """Advisory check of one candidate booking.

        ``allow_override`` lifts ``occupied`` and ``allow_unavailable`` lifts
        ``unavailable``; the two are independent. A lifted result comes back
        ``ok`` with ``overridden`` set and the reason kept for the audit log.
        """
        if not assignments:
            raise BookingValidationError("At least one staff assignment is required")

        if duration_minutes is None:
            duration_minutes = await self.duration_for_services(
                [a.service_id for a in assignments]
            )

        staff_ids = [a.staff_id for a in assignments]
        busy = await self.load_busy_intervals(
            day, staff_ids, exclude_appointment_id=exclude_appointment_id
        )
        availability = await self.load_availability(day, staff_ids)
        result = self.classify(
            day, start_time, duration_minutes, staff_ids, busy, availability
        )

        if result.ok:
            return result

        lifted_reasons = []
        if result.status == SlotStatus.UNAVAILABLE and allow_unavailable:
            lifted_reasons.append(result.reason)
            required = self.calendar.required_sub_slots(
                start_time, duration_minutes, day
            )
            open_map = {staff_id: dict.fromkeys(required, True) for staff_id in staff_ids}
            result = self.classify(
                day, start_time, duration_minutes, staff_ids, busy, open_map
            )
        if result.status == SlotStatus.OCCUPIED and allow_override:
            lifted_reasons.append(result.reason)
            result.ok = True
        elif result.ok:
            result.reason = None

        if result.ok and lifted_reasons:
            result.overridden = True
            result.reason = "; ".join(lifted_reasons)
            logger.info(
                f"Override accepted on {day} at {format_time(start_time)}: "
                f"{result.reason}"
            )
        return result

    async def check(self, request: ConflictCheckRequest) -> ConflictCheckResult:
        return await self.validate(
            request.date,
            request.start_time,
            request.assignments,
            allow_override=request.allow_override,
            allow_unavailable=request.allow_unavailable,
            duration_minutes=request.duration_minutes,
        )

    async def slot_grid(
        self, day: date, staff_ids: list[int], duration_minutes: int
    ) -> list[SlotState]:
        """State of every sub-slot of the day for the given staff and duration."""
        busy = await self.load_busy_intervals(day, staff_ids)
        availability = await self.load_availability(day, staff_ids)

        grid = []
        for slot in self.calendar.sub_slots_for_date(day):
            result = self.classify(
                day, slot, duration_minutes, staff_ids, busy, availability
            )
            busy_staff = (
                result.unavailable_staff_ids
                if result.status == SlotStatus.UNAVAILABLE
                else result.busy_staff_ids
            )
            grid.append(
                SlotState(
                    time=slot,
                    label=slot[:5],
                    status=result.status,
                    reason=result.reason,
                    busy_staff_ids=busy_staff,
                )
            )
        return grid

    async def next_available(
        self,
        staff_ids: list[int],
        duration_minutes: int,
        from_date: Optional[date] = None,
        horizon_days: int = 7,
    ) -> Optional[NextAvailableSlot]:
        """First bookable start, scanning forward, where every staff member is free.

        Starts the day after today unless ``from_date`` is given and looks at
        ``horizon_days`` days from there. Returns None when nothing fits.
        """
        if not staff_ids:
            raise BookingValidationError("At least one staff member is required")

        start = from_date or self.calendar.today() + timedelta(days=1)
        end = start + timedelta(days=horizon_days - 1)
        for day in self.calendar.bookable_dates(start, end):
            busy = await self.load_busy_intervals(day, staff_ids)
            availability = await self.load_availability(day, staff_ids)
            for slot in self.calendar.sub_slots_for_date(day):
                result = self.classify(
                    day, slot, duration_minutes, staff_ids, busy, availability
                )
                if result.ok:
                    return NextAvailableSlot(
                        date=day,
                        time=slot,
                        staff_ids=list(dict.fromkeys(staff_ids)),
                        duration_minutes=duration_minutes,
                    )
        logger.info(
            f"No free window of {duration_minutes}min for staff {staff_ids} "
            f"between {start} and {end}"
        )
        return None


def _clock(minute: int) -> str:
    # Busy windows may run past midnight only in bad data; clamp for display
    minute = max(0, min(minute, 24 * 60 - 1))
    return f"{minute // 60:02d}:{minute % 60:02d}"

