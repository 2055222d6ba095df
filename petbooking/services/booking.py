import logging
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from redis.exceptions import RedisError
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from petbooking.core.config import settings
from petbooking.core.exceptions import (
    BookingConflictError,
    BookingError,
    BookingValidationError,
    DuplicateBookingError,
    PersistenceError,
    SlotUnavailableError,
)
from petbooking.core.redis import RedisClient, redis_client
from petbooking.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStaff,
    AppointmentStatus,
    override_note,
)
from petbooking.models.booking_event import BookingEvent, BookingEventType
from petbooking.models.client import Client, Pet
from petbooking.models.service import Service
from petbooking.models.staff import ROLE_ORDER, Staff, StaffRole
from petbooking.schemas.appointment import BookingRequest, BookingResult
from petbooking.schemas.scheduling import (
    ConflictCheckResult,
    SlotStatus,
    StaffAssignment,
)
from petbooking.schemas.service import PricingResult
from petbooking.services.conflicts import ConflictResolver
from petbooking.services.pricing import PricingService
from petbooking.services.slot_calendar import SlotCalendar
from petbooking.utils.dates import format_time

logger = logging.getLogger(__name__)

_USE_DEFAULT_LOCK = object()


def derive_required_roles(services: Iterable[Optional[Service]]) -> list[StaffRole]:
    """Union of the roles every selected service needs, in canonical order."""
    required = set()
    for service in services:
        if service is not None:
            required.update(service.required_roles)
    return [role for role in ROLE_ORDER if role in required]


def aggregate_totals(
    lines: Iterable[PricingResult], extra_fee: Decimal = Decimal("0")
) -> tuple[int, Decimal]:
    """Total duration in minutes and total price of the priced service lines."""
    duration = 0
    price = Decimal("0")
    for line in lines:
        duration += line.duration_minutes
        price += line.price
    return duration, price + extra_fee


class BookingStage(str, Enum):
    SELECTING_CLIENT_PET_SERVICE = "selecting_client_pet_service"
    SELECTING_STAFF = "selecting_staff"
    SELECTING_DATE_TIME = "selecting_date_time"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class BookingFlow:
    """Linear booking flow that accumulates one ``BookingRequest``.

    Nothing is persisted until :meth:`submit`; abandoning a flow leaves no
    trace. The flow will not move to date/time selection while a required
    role has no staff member assigned.
    """

    def __init__(self, calendar: Optional[SlotCalendar] = None):
        self.calendar = calendar or SlotCalendar()
        self.stage = BookingStage.SELECTING_CLIENT_PET_SERVICE
        self.primary_service: Optional[Service] = None
        self.secondary_service: Optional[Service] = None
        self.primary_staff: Optional[Staff] = None
        self.secondary_staff: Optional[Staff] = None
        self.draft: dict = {}
        self.result: Optional[BookingResult] = None
        self.error: Optional[BookingError] = None

    @property
    def required_roles(self) -> list[StaffRole]:
        return derive_required_roles([self.primary_service, self.secondary_service])

    def select_client_pet_services(
        self,
        pet_id: int,
        primary_service: Service,
        secondary_service: Optional[Service] = None,
        client_id: Optional[int] = None,
        client_user_id: Optional[str] = None,
    ) -> BookingStage:
        self._expect(BookingStage.SELECTING_CLIENT_PET_SERVICE)
        if client_id is None and not client_user_id:
            raise BookingValidationError("client_id or client_user_id is required")
        self.draft.update(
            client_id=client_id,
            client_user_id=client_user_id,
            pet_id=pet_id,
            primary_service_id=primary_service.id,
            secondary_service_id=secondary_service.id if secondary_service else None,
        )
        self.primary_service = primary_service
        self.secondary_service = secondary_service
        self.stage = BookingStage.SELECTING_STAFF
        return self.stage

    def assign_staff(
        self, primary_staff: Optional[Staff], secondary_staff: Optional[Staff] = None
    ) -> BookingStage:
        self._expect(BookingStage.SELECTING_STAFF)
        self.primary_staff = primary_staff
        self.secondary_staff = secondary_staff
        return self.stage

    def missing_roles(self) -> list[StaffRole]:
        """Required roles not yet covered by the staff assigned to their service."""
        missing = set()
        pairs = [
            (self.primary_service, self.primary_staff),
            (self.secondary_service, self.secondary_staff),
        ]
        for service, staff in pairs:
            if service is None:
                continue
            covered = staff.roles if staff is not None else set()
            missing.update(set(service.required_roles) - covered)
        return [role for role in ROLE_ORDER if role in missing]

    def advance_to_date_time(self) -> BookingStage:
        self._expect(BookingStage.SELECTING_STAFF)
        missing = self.missing_roles()
        if missing:
            raise BookingValidationError(
                "Every required role needs an assigned staff member",
                missing_roles=[role.value for role in missing],
            )
        provider_ids = [
            staff.id
            for staff in (self.primary_staff, self.secondary_staff)
            if staff is not None
        ]
        self.draft["provider_ids"] = provider_ids
        self.stage = BookingStage.SELECTING_DATE_TIME
        return self.stage

    def select_date_time(self, day: date, start: time) -> BookingStage:
        self._expect(BookingStage.SELECTING_DATE_TIME)
        if not self.calendar.is_bookable_date(day):
            raise BookingValidationError(
                f"{day.isoformat()} is not a bookable date", date=day.isoformat()
            )
        self.draft.update(date=day, time=start)
        return self.stage

    def to_request(self, **extra) -> BookingRequest:
        self._expect(BookingStage.SELECTING_DATE_TIME)
        if "date" not in self.draft or "time" not in self.draft:
            raise BookingValidationError("Date and time must be selected first")
        return BookingRequest(**self.draft, **extra)

    async def submit(
        self, orchestrator: "BookingOrchestrator", **extra
    ) -> BookingResult:
        """Commit the accumulated request and settle the flow's final stage."""
        request = self.to_request(**extra)
        try:
            self.result = await orchestrator.create_booking(request)
        except BookingError as e:
            self.error = e
            self.stage = BookingStage.REJECTED
            raise
        self.stage = BookingStage.CONFIRMED
        return self.result

    def _expect(self, stage: BookingStage):
        if self.stage != stage:
            raise BookingValidationError(
                f"Booking flow is at {self.stage.value}, not {stage.value}"
            )


@dataclass
class _ServiceLine:
    service: Service
    staff: Optional[Staff]
    pricing: PricingResult


class BookingOrchestrator:
    """Validate, price, conflict-check and commit bookings.

    The conflict check before the commit is advisory. The commit locks the
    staff rows involved and checks again inside the same transaction, and
    only that second check decides.
    """

    def __init__(
        self,
        db: AsyncSession,
        calendar: Optional[SlotCalendar] = None,
        pricing: Optional[PricingService] = None,
        lock_client=_USE_DEFAULT_LOCK,
    ):
        self.db = db
        self.calendar = calendar or SlotCalendar()
        self.pricing = pricing or PricingService(db)
        self.resolver = ConflictResolver(db, self.calendar)
        self.lock_client: Optional[RedisClient] = (
            redis_client if lock_client is _USE_DEFAULT_LOCK else lock_client
        )

    async def create_booking(
        self, request: BookingRequest, override: bool = False
    ) -> BookingResult:
        allow_override = override or request.override_conflicts
        logger.info(
            f"Booking request for pet {request.pet_id} on {request.date} at "
            f"{format_time(request.time)} (override={allow_override})"
        )

        self._validate_slot(request.date, request.time)
        client = await self._load_client(request)
        pet = await self._load_pet(request.pet_id, client.id)
        lines = await self._build_lines(request, pet)
        duration, total_price = aggregate_totals(
            [line.pricing for line in lines], request.extra_fee
        )
        assignments = [
            StaffAssignment(staff_id=line.staff.id, service_id=line.service.id)
            for line in lines
            if line.staff is not None
        ]

        lock_key = f"booking:{request.fingerprint()}"
        locked = await self._acquire(lock_key)
        try:
            existing = await self._find_identical(request, client.id, assignments)
            if existing is not None:
                logger.info(
                    f"Resubmitted booking matches appointment {existing.id}, "
                    "returning it"
                )
                return self._result_for(existing, duplicate=True)

            # Advisory pre-check
            if assignments:
                precheck = await self.resolver.validate(
                    request.date,
                    request.time,
                    assignments,
                    allow_override=allow_override,
                    allow_unavailable=request.override_availability,
                    duration_minutes=duration,
                )
                if not precheck.ok:
                    self._raise_for(precheck)

            return await self._commit(
                request,
                client,
                pet,
                lines,
                assignments,
                duration,
                total_price,
                allow_override,
            )
        finally:
            if locked:
                await self.lock_client.release_lock(lock_key)

    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        result = await self.db.execute(
            select(Appointment)
            .options(
                selectinload(Appointment.staff_assignments),
                selectinload(Appointment.events),
            )
            .where(Appointment.id == appointment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def cancel_appointment(
        self,
        appointment_id: int,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Mark an appointment cancelled. Rows are never deleted."""
        return await self.transition_status(
            appointment_id, AppointmentStatus.CANCELLED, actor=actor, notes=reason
        )

    async def transition_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        if appointment is None:
            raise BookingValidationError(
                f"Appointment {appointment_id} not found",
                appointment_id=appointment_id,
            )

        previous = appointment.status
        if not appointment.transition_to(new_status):
            raise BookingValidationError(
                f"Cannot change appointment from {previous} to {new_status.value}",
                appointment_id=appointment_id,
            )

        event_type = (
            BookingEventType.CANCELLED
            if new_status == AppointmentStatus.CANCELLED
            else BookingEventType.STATUS_CHANGED
        )
        message = f"{previous} -> {new_status.value}"
        if notes:
            message = f"{message}: {notes}"
        self.db.add(
            BookingEvent(
                appointment_id=appointment.id,
                event_type=event_type.value,
                actor=actor,
                message=message,
            )
        )

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Status change failed for appointment {appointment_id}: {e}")
            raise PersistenceError(
                "Failed to update appointment status", appointment_id=appointment_id
            ) from e

        logger.info(
            f"Appointment {appointment_id} moved {previous} -> {new_status.value} "
            f"by {actor or 'unknown'}"
        )
        return await self.get_appointment(appointment_id)

    async def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_time: time,
        extra_fee: Optional[Decimal] = None,
        admin_notes: Optional[str] = None,
        edit_reason: Optional[str] = None,
        edited_by: Optional[str] = None,
        allow_override: bool = False,
        allow_unavailable: bool = False,
    ) -> Appointment:
        """Move a pending or confirmed appointment to a new date and time.

        Staff, services and duration stay the same. The new window is checked
        under the staff write locks with the appointment itself left out, so
        shifting it inside its own window never conflicts with itself.
        """
        appointment = await self.get_appointment(appointment_id)
        if appointment is None:
            raise BookingValidationError(
                f"Appointment {appointment_id} not found",
                appointment_id=appointment_id,
            )
        if appointment.status not in (
            AppointmentStatus.PENDING.value,
            AppointmentStatus.CONFIRMED.value,
        ):
            raise BookingValidationError(
                f"Cannot reschedule a {appointment.status} appointment",
                appointment_id=appointment_id,
            )
        self._validate_slot(new_date, new_time)

        assignments = [
            StaffAssignment(staff_id=row.staff_id, service_id=row.service_id)
            for row in appointment.staff_assignments
        ]
        previous = f"{appointment.date.isoformat()} {format_time(appointment.time)}"

        try:
            check = None
            if assignments:
                await self._lock_staff([a.staff_id for a in assignments])
                check = await self.resolver.validate(
                    new_date,
                    new_time,
                    assignments,
                    allow_override=allow_override,
                    allow_unavailable=allow_unavailable,
                    duration_minutes=appointment.duration,
                    exclude_appointment_id=appointment_id,
                )
                if not check.ok:
                    self._raise_for(check)
            overridden = bool(check and check.overridden)

            appointment.date = new_date
            appointment.time = new_time
            if extra_fee is not None:
                appointment.total_price = (
                    appointment.total_price - appointment.extra_fee + extra_fee
                )
                appointment.extra_fee = extra_fee

            added = [admin_notes]
            if overridden:
                added.append(override_note(check.reason, edited_by))
                appointment.is_override = True
                appointment.override_reason = check.reason
            appointment.notes = (
                "\n".join(line for line in [appointment.notes, *added] if line)
                or None
            )

            message = f"{previous} -> {new_date.isoformat()} {format_time(new_time)}"
            if edit_reason:
                message = f"{message}: {edit_reason}"
            self.db.add(
                BookingEvent(
                    appointment_id=appointment_id,
                    event_type=BookingEventType.RESCHEDULED.value,
                    actor=edited_by,
                    message=message,
                )
            )
            if overridden:
                self.db.add(
                    BookingEvent(
                        appointment_id=appointment_id,
                        event_type=BookingEventType.OVERRIDE.value,
                        actor=edited_by,
                        message=check.reason,
                    )
                )
            await self.db.commit()
        except BookingError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Reschedule failed for appointment {appointment_id}: {e}")
            raise PersistenceError(
                "Failed to reschedule appointment", appointment_id=appointment_id
            ) from e

        logger.info(
            f"Appointment {appointment_id} moved from {previous} to "
            f"{new_date} {format_time(new_time)} by {edited_by or 'unknown'}"
        )
        return await self.get_appointment(appointment_id)

    def _validate_slot(self, day: date, start: time):
        if not self.calendar.is_bookable_date(day):
            raise BookingValidationError(
                f"{day.isoformat()} is not a bookable date",
                date=day.isoformat(),
            )
        if not self.calendar.is_on_step(start):
            raise BookingValidationError(
                f"Start time {start.isoformat()} is not a whole minute on the "
                f"{self.calendar.config.step_minutes}-minute grid",
                time=start.isoformat(),
            )
        if not self.calendar.is_within_business_hours(day, start):
            raise BookingValidationError(
                f"Start time {format_time(start)} is outside business hours",
                time=format_time(start),
            )

    async def _load_client(self, request: BookingRequest) -> Client:
        if request.client_id is not None:
            query = select(Client).where(Client.id == request.client_id)
        else:
            query = select(Client).where(Client.user_id == request.client_user_id)
        result = await self.db.execute(query)
        client = result.scalar_one_or_none()
        if client is None:
            raise BookingValidationError(
                "Client not found",
                client_id=request.client_id,
                client_user_id=request.client_user_id,
            )
        return client

    async def _load_pet(self, pet_id: int, client_id: int) -> Pet:
        result = await self.db.execute(select(Pet).where(Pet.id == pet_id))
        pet = result.scalar_one_or_none()
        if pet is None:
            raise BookingValidationError("Pet not found", pet_id=pet_id)
        if pet.client_id != client_id:
            raise BookingValidationError(
                "Pet does not belong to client", pet_id=pet_id, client_id=client_id
            )
        return pet

    async def _load_service(self, service_id: int) -> Service:
        result = await self.db.execute(select(Service).where(Service.id == service_id))
        service = result.scalar_one_or_none()
        if service is None or not service.is_active:
            raise BookingValidationError("Service not found", service_id=service_id)
        return service

    async def _load_staff(self, staff_id: int, service: Service) -> Staff:
        result = await self.db.execute(select(Staff).where(Staff.id == staff_id))
        staff = result.scalar_one_or_none()
        if staff is None or not staff.is_active:
            raise BookingValidationError("Staff member not found", staff_id=staff_id)
        if not staff.has_roles(service.required_roles):
            raise BookingValidationError(
                f"{staff.name} cannot perform {service.name}",
                staff_id=staff_id,
                service_id=service.id,
                required_roles=[role.value for role in service.required_roles],
            )
        return staff

    async def _build_lines(
        self, request: BookingRequest, pet: Pet
    ) -> list[_ServiceLine]:
        """Pair each selected service with its staff member and resolved price."""
        selections = [(request.primary_service_id, request.primary_staff_id)]
        if request.secondary_service_id is not None:
            selections.append(
                (request.secondary_service_id, request.secondary_staff_id)
            )
        elif request.secondary_staff_id is not None:
            raise BookingValidationError(
                "A second staff member needs a secondary service",
                staff_id=request.secondary_staff_id,
            )

        lines = []
        for service_id, staff_id in selections:
            service = await self._load_service(service_id)
            staff = None
            if staff_id is not None:
                staff = await self._load_staff(staff_id, service)
            elif service.requires_staff:
                raise BookingValidationError(
                    f"{service.name} needs a staff member",
                    service_id=service.id,
                    missing_roles=[role.value for role in service.required_roles],
                )
            pricing = await self.pricing.resolve(service, pet.breed, pet.size)
            lines.append(_ServiceLine(service=service, staff=staff, pricing=pricing))
        return lines

    async def _acquire(self, key: str) -> bool:
        if self.lock_client is None:
            return False
        try:
            acquired = await self.lock_client.acquire_lock(
                key, settings.BOOKING_LOCK_SECONDS
            )
        except RedisError as e:
            # The commit-time check still guards against double booking
            logger.warning(f"Booking lock unavailable, continuing without it: {e}")
            return False
        if not acquired:
            raise DuplicateBookingError(
                "An identical booking is already being processed"
            )
        return True

    async def _find_identical(
        self,
        request: BookingRequest,
        client_id: int,
        assignments: list[StaffAssignment],
    ) -> Optional[Appointment]:
        result = await self.db.execute(
            select(Appointment)
            .options(selectinload(Appointment.staff_assignments))
            .where(
                and_(
                    Appointment.client_id == client_id,
                    Appointment.pet_id == request.pet_id,
                    Appointment.service_id == request.primary_service_id,
                    Appointment.secondary_service_id == request.secondary_service_id
                    if request.secondary_service_id is not None
                    else Appointment.secondary_service_id.is_(None),
                    Appointment.date == request.date,
                    Appointment.time == request.time,
                    Appointment.status.in_(ACTIVE_STATUSES),
                )
            )
            .order_by(Appointment.id)
        )
        wanted = sorted((a.staff_id, a.service_id) for a in assignments)
        for appointment in result.scalars().all():
            held = sorted(
                (row.staff_id, row.service_id) for row in appointment.staff_assignments
            )
            if held == wanted:
                return appointment
        return None

    async def _lock_staff(self, staff_ids: list[int]):
        """Take the write lock for each staff member before the commit-time check.

        An UPDATE holds the row lock on PostgreSQL and the database write lock
        on SQLite until the transaction ends. Rows are touched in id order.
        """
        for staff_id in sorted(set(staff_ids)):
            await self.db.execute(
                update(Staff)
                .where(Staff.id == staff_id)
                .values(booking_seq=Staff.booking_seq + 1)
                .execution_options(synchronize_session=False)
            )

    async def _commit(
        self,
        request: BookingRequest,
        client: Client,
        pet: Pet,
        lines: list[_ServiceLine],
        assignments: list[StaffAssignment],
        duration: int,
        total_price: Decimal,
        allow_override: bool,
    ) -> BookingResult:
        """Re-check under staff row locks, then write everything in one transaction."""
        try:
            check = None
            if assignments:
                await self._lock_staff([a.staff_id for a in assignments])
                check = await self.resolver.validate(
                    request.date,
                    request.time,
                    assignments,
                    allow_override=allow_override,
                    allow_unavailable=request.override_availability,
                    duration_minutes=duration,
                )
                if not check.ok:
                    logger.warning(
                        f"Commit-time check rejected booking on {request.date} at "
                        f"{format_time(request.time)}: {check.reason}"
                    )
                    self._raise_for(check)

            overridden = bool(check and check.overridden)
            notes = request.notes
            if overridden:
                note = override_note(check.reason, request.created_by)
                notes = f"{notes}\n{note}" if notes else note

            primary = lines[0]
            secondary = lines[1] if len(lines) > 1 else None
            appointment = Appointment(
                client_id=client.id,
                pet_id=pet.id,
                service_id=primary.service.id,
                secondary_service_id=secondary.service.id if secondary else None,
                date=request.date,
                time=request.time,
                duration=duration,
                total_price=total_price,
                extra_fee=request.extra_fee,
                status=AppointmentStatus.PENDING.value,
                notes=notes,
                is_override=overridden,
                override_reason=check.reason if overridden else None,
                created_by=request.created_by,
            )
            self.db.add(appointment)
            await self.db.flush()

            for line in lines:
                if line.staff is None:
                    continue
                self.db.add(
                    AppointmentStaff(
                        appointment_id=appointment.id,
                        staff_id=line.staff.id,
                        service_id=line.service.id,
                        roles=",".join(
                            role.value for role in line.service.required_roles
                        ),
                    )
                )

            self.db.add(
                BookingEvent(
                    appointment_id=appointment.id,
                    event_type=BookingEventType.CREATED.value,
                    actor=request.created_by,
                    message=(
                        f"Booked {request.date.isoformat()} {format_time(request.time)} "
                        f"for {duration} minutes"
                    ),
                )
            )
            if overridden:
                self.db.add(
                    BookingEvent(
                        appointment_id=appointment.id,
                        event_type=BookingEventType.OVERRIDE.value,
                        actor=request.created_by,
                        message=check.reason,
                    )
                )

            result = self._result_for(appointment)
            await self.db.commit()
        except BookingError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Booking rejected by a database constraint: {e}")
            raise PersistenceError(
                "Booking violates a database constraint", pet_id=request.pet_id
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Booking commit failed: {e}")
            raise PersistenceError(
                "Failed to save booking", pet_id=request.pet_id
            ) from e

        logger.info(
            f"Created appointment {result.appointment_id} for pet {pet.id} on "
            f"{request.date} at {format_time(request.time)} "
            f"({duration}min, {total_price}, override={result.overridden})"
        )
        return result

    @staticmethod
    def _result_for(appointment: Appointment, duplicate: bool = False) -> BookingResult:
        return BookingResult(
            appointment_id=appointment.id,
            appointment_uuid=appointment.uuid,
            date=appointment.date,
            time=appointment.time,
            duration_minutes=appointment.duration,
            total_price=appointment.total_price,
            overridden=appointment.is_override,
            override_reason=appointment.override_reason,
            duplicate=duplicate,
        )

    @staticmethod
    def _raise_for(result: ConflictCheckResult):
        if result.status == SlotStatus.UNAVAILABLE:
            raise SlotUnavailableError(
                result.reason, staff_ids=result.unavailable_staff_ids
            )
        raise BookingConflictError(
            result.reason,
            conflicting_appointment_ids=result.conflicting_appointment_ids,
        )
