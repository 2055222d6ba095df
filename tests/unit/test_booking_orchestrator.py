"""Test the booking commit: validation, pricing, conflicts and atomicity."""

from datetime import date, time
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.core.exceptions import (
    BookingConflictError,
    BookingValidationError,
    DuplicateBookingError,
    PersistenceError,
    SlotUnavailableError,
)
from petbooking.models.appointment import Appointment, AppointmentStatus
from petbooking.models.booking_event import BookingEventType
from petbooking.schemas.appointment import BookingRequest
from petbooking.schemas.scheduling import ConflictCheckResult
from petbooking.services.availability import AvailabilityStore
from petbooking.services.booking import BookingOrchestrator
from petbooking.services.conflicts import ConflictResolver
from tests.fixtures.booking_fixtures import MONDAY, SUNDAY, seed_appointment


def rex_request(shop, **overrides) -> BookingRequest:
    """Ana's poodle Rex, haircut with Sam, Monday 10:00."""
    data = dict(
        client_id=shop.ana.id,
        pet_id=shop.rex.id,
        primary_service_id=shop.haircut.id,
        provider_ids=[shop.sam.id],
        date=MONDAY,
        time=time(10, 0),
        created_by="front-desk",
    )
    data.update(overrides)
    return BookingRequest(**data)


def thor_request(shop, **overrides) -> BookingRequest:
    """Bruno's beagle Thor, bath with Sam, Monday 10:30."""
    data = dict(
        client_id=shop.bruno.id,
        pet_id=shop.thor.id,
        primary_service_id=shop.bath.id,
        provider_ids=[shop.sam.id],
        date=MONDAY,
        time=time(10, 30),
        created_by="admin@shop",
    )
    data.update(overrides)
    return BookingRequest(**data)


async def count_appointments(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Appointment))
    return result.scalar_one()


@pytest.fixture
def orchestrator(db: AsyncSession, calendar) -> BookingOrchestrator:
    return BookingOrchestrator(db, calendar, lock_client=None)


class TestCreateBooking:
    async def test_books_with_resolved_price_and_duration(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop, extra_fee=Decimal("15.00"), notes="Nervous dog")

        result = await orchestrator.create_booking(request)

        assert result.duration_minutes == 90
        assert result.total_price == Decimal("110.00")
        assert result.overridden is False
        assert result.duplicate is False

        appointment = await orchestrator.get_appointment(result.appointment_id)
        assert appointment.status == AppointmentStatus.PENDING.value
        assert appointment.notes == "Nervous dog"
        assert appointment.extra_fee == Decimal("15.00")
        assert appointment.staff_ids == [shop.sam.id]
        assert appointment.staff_assignments[0].roles == "grooming"
        assert [e.event_type for e in appointment.events] == [
            BookingEventType.CREATED.value
        ]
        assert appointment.events[0].actor == "front-desk"

    async def test_client_found_by_user_id(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop, client_id=None, client_user_id="auth|ana")

        result = await orchestrator.create_booking(request)

        appointment = await orchestrator.get_appointment(result.appointment_id)
        assert appointment.client_id == shop.ana.id

    async def test_overlap_rejected_then_overridden(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        first = thor_request(shop, time=time(10, 0), primary_service_id=shop.haircut.id)
        second = rex_request(shop, primary_service_id=shop.bath.id, time=time(10, 30))
        second_override = rex_request(
            shop,
            primary_service_id=shop.bath.id,
            time=time(10, 30),
            override_conflicts=True,
        )
        booked = await orchestrator.create_booking(first)

        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.create_booking(second)

        error = exc_info.value
        assert error.conflicting_appointment_ids == [booked.appointment_id]
        assert error.to_dict()["override_allowed"] is True
        assert error.to_dict()["error"] == "conflict"

        result = await orchestrator.create_booking(second_override)

        assert result.overridden is True
        assert "already booked" in result.override_reason
        appointment = await orchestrator.get_appointment(result.appointment_id)
        assert appointment.is_override is True
        assert "[override by front-desk]" in appointment.notes
        assert [e.event_type for e in appointment.events] == [
            BookingEventType.CREATED.value,
            BookingEventType.OVERRIDE.value,
        ]
        assert await count_appointments(db) == 2

    async def test_override_argument_matches_request_flag(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        first = thor_request(shop, time=time(10, 0))
        second = rex_request(shop, primary_service_id=shop.bath.id, time=time(10, 0))
        await orchestrator.create_booking(first)

        result = await orchestrator.create_booking(second, override=True)

        assert result.overridden is True

    async def test_back_to_back_booking_succeeds(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        first = thor_request(shop, time=time(10, 0), primary_service_id=shop.haircut.id)
        second = rex_request(shop, primary_service_id=shop.bath.id, time=time(11, 0))
        await orchestrator.create_booking(first)

        result = await orchestrator.create_booking(second)

        assert result.overridden is False
        assert await count_appointments(db) == 2

    async def test_blocked_slot_needs_availability_override(
        self, db: AsyncSession, shop, calendar, orchestrator, monday_open
    ):
        await AvailabilityStore(db, calendar).toggle_anchor(
            shop.sam.id, MONDAY, "14:00:00", False
        )
        blocked = thor_request(shop, time=time(14, 0), override_conflicts=True)
        forced = thor_request(shop, time=time(14, 0), override_availability=True)

        with pytest.raises(SlotUnavailableError) as exc_info:
            await orchestrator.create_booking(blocked)
        assert exc_info.value.to_dict()["override_allowed"] is False

        result = await orchestrator.create_booking(forced)
        assert result.overridden is True
        assert "unavailable" in result.override_reason

    async def test_sunday_rejected(self, db: AsyncSession, shop, orchestrator, monday_open):
        with pytest.raises(BookingValidationError):
            await orchestrator.create_booking(rex_request(shop, date=SUNDAY))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"date": date(2025, 5, 30)},
            {"time": time(10, 5)},
            {"time": time(10, 0, 30)},
            {"time": time(8, 50)},
            {"time": time(17, 0)},
            {"date": date(2025, 6, 7), "time": time(12, 0)},
        ],
    )
    async def test_schedule_rules(
        self, db: AsyncSession, shop, orchestrator, monday_open, overrides
    ):
        with pytest.raises(BookingValidationError):
            await orchestrator.create_booking(rex_request(shop, **overrides))

    async def test_unknown_entities_rejected(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        cases = [
            rex_request(shop, client_id=999),
            rex_request(shop, client_id=None, client_user_id="auth|nobody"),
            rex_request(shop, pet_id=999),
            rex_request(shop, pet_id=shop.thor.id),
            rex_request(shop, primary_service_id=999),
            rex_request(shop, primary_service_id=shop.retired.id),
            rex_request(shop, provider_ids=[999]),
            rex_request(shop, provider_ids=[shop.idle.id], primary_service_id=shop.bath.id),
        ]
        for request in cases:
            with pytest.raises(BookingValidationError):
                await orchestrator.create_booking(request)
        assert await count_appointments(db) == 0

    async def test_staff_must_hold_service_roles(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop, provider_ids=[shop.gabi.id])

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_booking(request)

        assert exc_info.value.context["required_roles"] == ["grooming"]

    async def test_service_needing_staff_without_provider(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        with pytest.raises(BookingValidationError):
            await orchestrator.create_booking(rex_request(shop, provider_ids=[]))

    async def test_second_provider_needs_secondary_service(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop, provider_ids=[shop.sam.id, shop.gabi.id])
        with pytest.raises(BookingValidationError):
            await orchestrator.create_booking(request)


class TestDualServiceBooking:
    async def test_two_services_two_staff(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(
            shop,
            time=time(9, 0),
            primary_service_id=shop.bath.id,
            secondary_service_id=shop.haircut.id,
            provider_ids=[shop.gabi.id, shop.sam.id],
        )

        result = await orchestrator.create_booking(request)

        # 30 minute bath + 90 minute poodle haircut
        assert result.duration_minutes == 120
        assert result.total_price == Decimal("145.00")
        appointment = await orchestrator.get_appointment(result.appointment_id)
        assert appointment.secondary_service_id == shop.haircut.id
        assert sorted(appointment.staff_ids) == sorted([shop.gabi.id, shop.sam.id])

    async def test_each_staff_member_held_for_whole_window(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        dual = rex_request(
            shop,
            time=time(9, 0),
            primary_service_id=shop.bath.id,
            secondary_service_id=shop.haircut.id,
            provider_ids=[shop.gabi.id, shop.sam.id],
        )
        gabi_later = thor_request(shop, time=time(10, 30), provider_ids=[shop.gabi.id])
        await orchestrator.create_booking(dual)

        with pytest.raises(BookingConflictError):
            await orchestrator.create_booking(gabi_later)

    async def test_same_staff_on_both_services_is_a_conflict(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(
            shop,
            time=time(9, 0),
            primary_service_id=shop.bath.id,
            secondary_service_id=shop.haircut.id,
            provider_ids=[shop.sam.id, shop.sam.id],
        )

        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.create_booking(request)

        assert "both services" in exc_info.value.reason
        assert await count_appointments(db) == 0


class TestCommitIsAuthoritative:
    async def test_stale_precheck_caught_at_commit(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        first = thor_request(shop, time=time(10, 0), primary_service_id=shop.haircut.id)
        second = rex_request(shop, primary_service_id=shop.bath.id, time=time(10, 30))
        await orchestrator.create_booking(first)

        real_validate = ConflictResolver.validate
        calls = []

        async def optimistic_first(self, *args, **kwargs):
            calls.append(kwargs.get("allow_override"))
            if len(calls) == 1:
                # Pre-check ran before the other booking committed
                return ConflictCheckResult(ok=True, duration_minutes=30)
            return await real_validate(self, *args, **kwargs)

        with patch.object(ConflictResolver, "validate", optimistic_first):
            with pytest.raises(BookingConflictError):
                await orchestrator.create_booking(second)

        assert len(calls) == 2
        assert await count_appointments(db) == 1

    async def test_override_still_runs_commit_check(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop, override_conflicts=True)
        real_validate = ConflictResolver.validate
        calls = []

        async def counting(self, *args, **kwargs):
            calls.append(kwargs["allow_override"])
            return await real_validate(self, *args, **kwargs)

        with patch.object(ConflictResolver, "validate", counting):
            await orchestrator.create_booking(request)

        assert calls == [True, True]

    async def test_database_failure_leaves_nothing_behind(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop)
        failure = OperationalError("COMMIT", {}, Exception("connection lost"))

        with patch.object(AsyncSession, "commit", AsyncMock(side_effect=failure)):
            with pytest.raises(PersistenceError):
                await orchestrator.create_booking(request)

        assert await count_appointments(db) == 0


class TestResubmission:
    async def test_identical_resubmission_returns_existing(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        request = rex_request(shop)

        first = await orchestrator.create_booking(request)
        second = await orchestrator.create_booking(request)

        assert second.duplicate is True
        assert second.appointment_id == first.appointment_id
        assert await count_appointments(db) == 1

    async def test_in_flight_duplicate_rejected(
        self, db: AsyncSession, shop, calendar, monday_open
    ):
        lock = AsyncMock()
        lock.acquire_lock.return_value = False
        orchestrator = BookingOrchestrator(db, calendar, lock_client=lock)

        with pytest.raises(DuplicateBookingError):
            await orchestrator.create_booking(rex_request(shop))

        lock.release_lock.assert_not_awaited()

    async def test_lock_released_after_commit(
        self, db: AsyncSession, shop, calendar, monday_open
    ):
        lock = AsyncMock()
        lock.acquire_lock.return_value = True
        orchestrator = BookingOrchestrator(db, calendar, lock_client=lock)
        request = rex_request(shop)

        await orchestrator.create_booking(request)

        key = f"booking:{request.fingerprint()}"
        lock.acquire_lock.assert_awaited_once()
        assert lock.acquire_lock.await_args.args[0] == key
        lock.release_lock.assert_awaited_once_with(key)


class TestStatusChanges:
    async def test_cancel_frees_the_slot(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        first = thor_request(shop, time=time(10, 0), primary_service_id=shop.haircut.id)
        second = rex_request(shop, primary_service_id=shop.bath.id, time=time(10, 30))
        booked = await orchestrator.create_booking(first)

        cancelled = await orchestrator.cancel_appointment(
            booked.appointment_id, actor="admin@shop", reason="Owner called"
        )

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        assert cancelled.events[-1].event_type == BookingEventType.CANCELLED.value
        assert cancelled.events[-1].message == "pending -> cancelled: Owner called"

        result = await orchestrator.create_booking(second)
        assert result.overridden is False
        assert await count_appointments(db) == 2

    async def test_lifecycle_transitions(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))

        confirmed = await orchestrator.transition_status(
            booked.appointment_id, AppointmentStatus.CONFIRMED, actor="vet"
        )
        assert confirmed.status == "confirmed"

        completed = await orchestrator.transition_status(
            booked.appointment_id, AppointmentStatus.COMPLETED, actor="vet"
        )

        assert completed.status == "completed"
        assert completed.previous_status == "confirmed"
        with pytest.raises(BookingValidationError):
            await orchestrator.cancel_appointment(booked.appointment_id)

    async def test_pending_cannot_jump_to_completed(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))

        with pytest.raises(BookingValidationError):
            await orchestrator.transition_status(
                booked.appointment_id, AppointmentStatus.COMPLETED
            )

    async def test_unknown_appointment(self, db: AsyncSession, orchestrator):
        with pytest.raises(BookingValidationError):
            await orchestrator.cancel_appointment(12345)
        assert await orchestrator.get_appointment(12345) is None


class TestReschedule:
    async def test_moves_booking_and_logs_the_edit(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))

        moved = await orchestrator.reschedule(
            booked.appointment_id,
            MONDAY,
            time(14, 0),
            extra_fee=Decimal("10.00"),
            admin_notes="Owner asked for the afternoon",
            edit_reason="Owner running late",
            edited_by="admin@shop",
        )

        assert moved.time == time(14, 0)
        assert moved.duration == 90
        assert moved.extra_fee == Decimal("10.00")
        assert moved.total_price == Decimal("105.00")
        assert moved.notes == "Owner asked for the afternoon"
        assert moved.is_override is False
        event = moved.events[-1]
        assert event.event_type == BookingEventType.RESCHEDULED.value
        assert event.actor == "admin@shop"
        assert event.message == (
            "2025-06-02 10:00:00 -> 2025-06-02 14:00:00: Owner running late"
        )

    async def test_shift_inside_its_own_window(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))

        moved = await orchestrator.reschedule(booked.appointment_id, MONDAY, time(10, 30))

        assert moved.time == time(10, 30)
        assert moved.total_price == Decimal("95.00")

    async def test_conflict_keeps_original_slot(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        await seed_appointment(db, shop, [shop.sam], "14:00", 60)
        booked = await orchestrator.create_booking(rex_request(shop))

        with pytest.raises(BookingConflictError):
            await orchestrator.reschedule(booked.appointment_id, MONDAY, time(14, 30))

        unchanged = await orchestrator.get_appointment(booked.appointment_id)
        assert unchanged.time == time(10, 0)
        assert [e.event_type for e in unchanged.events] == ["created"]

    async def test_override_is_recorded(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        existing = await seed_appointment(db, shop, [shop.sam], "14:00", 60)
        existing_id = existing.id
        booked = await orchestrator.create_booking(rex_request(shop))

        moved = await orchestrator.reschedule(
            booked.appointment_id,
            MONDAY,
            time(14, 30),
            edited_by="admin@shop",
            allow_override=True,
        )

        assert moved.is_override is True
        assert f"appointment {existing_id}" in moved.override_reason
        assert moved.notes.startswith("[override by admin@shop]")
        assert [e.event_type for e in moved.events] == [
            "created",
            "rescheduled",
            "override",
        ]

    async def test_blocked_slot_needs_availability_override(
        self, db: AsyncSession, shop, calendar, orchestrator, monday_open
    ):
        await AvailabilityStore(db, calendar).toggle_anchor(
            shop.sam.id, MONDAY, "15:00", False
        )
        booked = await orchestrator.create_booking(rex_request(shop))

        with pytest.raises(SlotUnavailableError):
            await orchestrator.reschedule(
                booked.appointment_id, MONDAY, time(15, 0), allow_override=True
            )

        moved = await orchestrator.reschedule(
            booked.appointment_id, MONDAY, time(15, 0), allow_unavailable=True
        )
        assert moved.time == time(15, 0)
        assert moved.is_override is True

    async def test_cancelled_or_unknown_cannot_move(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))
        await orchestrator.cancel_appointment(booked.appointment_id)

        with pytest.raises(BookingValidationError):
            await orchestrator.reschedule(booked.appointment_id, MONDAY, time(14, 0))
        with pytest.raises(BookingValidationError):
            await orchestrator.reschedule(999, MONDAY, time(14, 0))

    async def test_closed_day_rejected(
        self, db: AsyncSession, shop, orchestrator, monday_open
    ):
        booked = await orchestrator.create_booking(rex_request(shop))

        with pytest.raises(BookingValidationError):
            await orchestrator.reschedule(booked.appointment_id, SUNDAY, time(10, 0))
