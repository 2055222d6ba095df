import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.core.exceptions import AvailabilityUpdateError, BookingValidationError
from petbooking.models.availability import StaffAvailability
from petbooking.models.staff import Staff
from petbooking.services.slot_calendar import SlotCalendar
from petbooking.utils.dates import TimeLike, format_time, parse_time

logger = logging.getLogger(__name__)


class AvailabilityStore:
    """Per-staff, per-date, 10-minute availability rows.

    Bulk writes are single statements so readers never see half a day
    updated, and nothing is retried: a failure is rolled back and reported
    with the staff/date/slots it was applied to.
    """

    def __init__(self, db: AsyncSession, calendar: Optional[SlotCalendar] = None):
        self.db = db
        self.calendar = calendar or SlotCalendar()

    async def get_slots_for_staff_and_date(
        self, staff_id: int, day: date
    ) -> list[StaffAvailability]:
        result = await self.db.execute(
            select(StaffAvailability)
            .where(
                and_(
                    StaffAvailability.staff_id == staff_id,
                    StaffAvailability.date == day,
                )
            )
            .order_by(StaffAvailability.time_slot)
        )
        return list(result.scalars().all())

    async def bulk_generate(
        self,
        staff_id: int,
        start_date: date,
        end_date: date,
        start_time: Optional[TimeLike] = None,
        end_time: Optional[TimeLike] = None,
        default_available: bool = True,
    ) -> int:
        """Create every missing sub-slot in the date and time range.

        Closed days are skipped and existing rows are left untouched, so the
        call is safe to repeat. Returns the number of rows inserted.
        """
        if end_date < start_date:
            raise BookingValidationError(
                "end_date must not be before start_date", staff_id=staff_id
            )

        inserted = 0
        current = start_date
        try:
            while current <= end_date:
                slots = self.calendar.sub_slots_between(current, start_time, end_time)
                if slots:
                    inserted += await self._insert_missing(
                        staff_id, current, slots, default_available
                    )
                current += timedelta(days=1)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Bulk availability generation failed for staff {staff_id} "
                f"on {current}: {e}"
            )
            raise AvailabilityUpdateError(
                "Failed to generate availability", staff_id=staff_id, day=current
            ) from e

        logger.info(
            f"Generated {inserted} availability rows for staff {staff_id} "
            f"from {start_date} to {end_date}"
        )
        return inserted

    async def toggle_anchor(
        self, staff_id: int, day: date, anchor: TimeLike, available: bool
    ) -> int:
        """Open or close the sub-slots one anchor covers. Returns rows matched.

        Zero means no rows exist for that anchor (nothing generated yet).
        """
        try:
            slots = self.calendar.sub_slots_for_anchor(anchor)
        except ValueError as e:
            raise BookingValidationError(str(e), staff_id=staff_id) from e
        affected = await self._set_available(staff_id, day, slots, available)
        if affected == 0:
            logger.warning(
                f"Toggle of anchor {format_time(anchor)} for staff {staff_id} "
                f"on {day} matched no availability rows"
            )
        return affected

    async def set_day_availability(
        self, staff_id: int, day: date, available: bool
    ) -> int:
        """Open or close every sub-slot of the business day in one statement."""
        slots = self.calendar.sub_slots_for_date(day)
        if not slots:
            return 0
        return await self._set_available(staff_id, day, slots, available)

    async def roll_availability(
        self, horizon_days: int, today: Optional[date] = None
    ) -> dict:
        """Make sure every active staff member has rows from today to today + horizon."""
        start = today or self.calendar.today()
        end = start + timedelta(days=horizon_days)

        result = await self.db.execute(select(Staff.id).where(Staff.is_active))
        staff_ids = list(result.scalars().all())

        inserted = 0
        for staff_id in staff_ids:
            inserted += await self.bulk_generate(staff_id, start, end)

        logger.info(
            f"Rolled availability {start}..{end} for {len(staff_ids)} staff: "
            f"{inserted} rows inserted"
        )
        return {
            "start_date": start,
            "end_date": end,
            "staff_count": len(staff_ids),
            "inserted": inserted,
        }

    async def day_matrix(
        self, day: date, staff_ids: list[int]
    ) -> dict[str, dict[int, bool]]:
        """Time slot -> staff id -> open, for every sub-slot of the business day.

        Slots with no stored row are reported closed.
        """
        unique_ids = list(dict.fromkeys(staff_ids))
        matrix = {
            slot: {staff_id: False for staff_id in unique_ids}
            for slot in self.calendar.sub_slots_for_date(day)
        }
        if not unique_ids or not matrix:
            return matrix

        result = await self.db.execute(
            select(StaffAvailability).where(
                and_(
                    StaffAvailability.staff_id.in_(unique_ids),
                    StaffAvailability.date == day,
                )
            )
        )
        for row in result.scalars().all():
            slot = format_time(row.time_slot)
            if slot in matrix:
                matrix[slot][row.staff_id] = row.available
        return matrix

    async def _set_available(
        self, staff_id: int, day: date, slots: list[str], available: bool
    ) -> int:
        times = [parse_time(slot) for slot in slots]
        statement = (
            update(StaffAvailability)
            .where(
                and_(
                    StaffAvailability.staff_id == staff_id,
                    StaffAvailability.date == day,
                    StaffAvailability.time_slot.in_(times),
                )
            )
            .values(available=available)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(statement)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Availability update failed for staff {staff_id} on {day} "
                f"slots {slots}: {e}"
            )
            raise AvailabilityUpdateError(
                "Failed to update availability",
                staff_id=staff_id,
                day=day,
                time_slots=slots,
            ) from e

        logger.info(
            f"Set {result.rowcount} slots for staff {staff_id} on {day} "
            f"to available={available}"
        )
        return result.rowcount

    async def _insert_missing(
        self, staff_id: int, day: date, slots: list[str], available: bool
    ) -> int:
        rows = [
            {
                "staff_id": staff_id,
                "date": day,
                "time_slot": parse_time(slot),
                "available": available,
            }
            for slot in slots
        ]
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            statement = postgresql.insert(StaffAvailability).values(rows)
        elif dialect == "sqlite":
            statement = sqlite.insert(StaffAvailability).values(rows)
        else:
            return await self._insert_missing_portable(staff_id, day, rows)

        statement = statement.on_conflict_do_nothing(
            index_elements=["staff_id", "date", "time_slot"]
        )
        result = await self.db.execute(statement)
        return max(result.rowcount, 0)

    async def _insert_missing_portable(
        self, staff_id: int, day: date, rows: list[dict]
    ) -> int:
        existing = {
            row.time_slot for row in await self.get_slots_for_staff_and_date(staff_id, day)
        }
        missing = [row for row in rows if row["time_slot"] not in existing]
        self.db.add_all(StaffAvailability(**row) for row in missing)
        await self.db.flush()
        return len(missing)
