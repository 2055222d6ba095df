from petbooking.services.slot_calendar import SlotCalendar


def get_calendar() -> SlotCalendar:
    """Business calendar built from the configured business hours."""
    return SlotCalendar()
