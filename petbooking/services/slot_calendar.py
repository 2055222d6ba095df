from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from petbooking.core.config import BusinessHoursConfig, settings
from petbooking.services.holidays import HolidayService
from petbooking.utils.dates import (
    TimeLike,
    business_today,
    format_time,
    from_minutes,
    parse_time,
    to_minutes,
)

SATURDAY = 5


def generate_anchors(
    start_hour: int, end_hour: int, anchor_minutes: int = 30
) -> list[str]:
    """Ordered ``HH:MM:SS`` anchors from ``start_hour:00`` up to ``end_hour:00``.

    The end hour itself is never an anchor start, so with 30-minute anchors
    the last one is ``end_hour-1:30``.
    """
    if end_hour <= start_hour:
        return []
    return [
        format_time(from_minutes(minute))
        for minute in range(start_hour * 60, end_hour * 60, anchor_minutes)
    ]


def sub_slots_for_anchor(
    anchor: TimeLike, step_minutes: int = 10, anchor_minutes: int = 30
) -> list[str]:
    """Expand an anchor into the sub-slots it covers.

    ``09:00`` -> ``09:00, 09:10, 09:20``; ``09:30`` -> ``09:30, 09:40, 09:50``.
    """
    start = to_minutes(anchor)
    if start % anchor_minutes != 0:
        raise ValueError(
            f"{format_time(anchor)} is not aligned to a {anchor_minutes}-minute anchor"
        )
    return [
        format_time(from_minutes(start + offset))
        for offset in range(0, anchor_minutes, step_minutes)
    ]


class SlotCalendar:
    """Business-day calendar: anchors, sub-slots and bookable dates."""

    def __init__(
        self,
        config: Optional[BusinessHoursConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or settings.business_hours
        self._clock = clock

    def today(self) -> date:
        now = self._clock() if self._clock else None
        return business_today(self.config.timezone, now)

    def end_hour_for(self, day: date) -> int:
        if day.weekday() == SATURDAY:
            return self.config.saturday_end
        return self.config.business_end

    def is_open_day(self, day: date) -> bool:
        if day.weekday() in self.config.closed_weekdays:
            return False
        if self.config.holiday_country and HolidayService.is_holiday(
            day, self.config.holiday_country
        ):
            return False
        return True

    def is_bookable_date(self, day: date) -> bool:
        if day < self.today():
            return False
        return self.is_open_day(day)

    def bookable_dates(self, start: date, end: date) -> list[date]:
        days = []
        current = start
        while current <= end:
            if self.is_bookable_date(current):
                days.append(current)
            current += timedelta(days=1)
        return days

    def anchors_for_date(self, day: date) -> list[str]:
        if not self.is_open_day(day):
            return []
        return generate_anchors(
            self.config.business_start,
            self.end_hour_for(day),
            self.config.anchor_minutes,
        )

    def sub_slots_for_anchor(self, anchor: TimeLike) -> list[str]:
        return sub_slots_for_anchor(
            anchor, self.config.step_minutes, self.config.anchor_minutes
        )

    def sub_slots_for_date(self, day: date) -> list[str]:
        return self.sub_slots_between(day, None, None)

    def sub_slots_between(
        self, day: date, start: Optional[TimeLike], end: Optional[TimeLike]
    ) -> list[str]:
        """Sub-slots in ``[start, end)`` clipped to the day's business hours."""
        if not self.is_open_day(day):
            return []
        open_minute = self.config.business_start * 60
        close_minute = self.end_hour_for(day) * 60
        first = open_minute if start is None else max(to_minutes(start), open_minute)
        last = close_minute if end is None else min(to_minutes(end), close_minute)
        step = self.config.step_minutes
        # Snap the first sub-slot onto the step grid
        first += (step - (first - open_minute) % step) % step
        return [
            format_time(from_minutes(minute)) for minute in range(first, last, step)
        ]

    def required_sub_slots(
        self, start: TimeLike, duration_minutes: int, day: date
    ) -> list[str]:
        """Sub-slots a booking of ``duration_minutes`` starting at ``start`` needs.

        Stops at the day's closing time.
        """
        start_minute = to_minutes(start)
        close_minute = self.end_hour_for(day) * 60
        step = self.config.step_minutes
        slots = []
        for offset in range(0, duration_minutes, step):
            minute = start_minute + offset
            if minute >= close_minute:
                break
            slots.append(format_time(from_minutes(minute)))
        return slots

    def is_within_business_hours(self, day: date, start: TimeLike) -> bool:
        minute = to_minutes(start)
        return (
            self.config.business_start * 60 <= minute < self.end_hour_for(day) * 60
        )

    def is_on_step(self, start: TimeLike) -> bool:
        """True for a whole-minute start on the sub-slot grid."""
        if isinstance(start, time) and start.microsecond:
            return False
        if parse_time(start).second:
            return False
        return to_minutes(start) % self.config.step_minutes == 0
