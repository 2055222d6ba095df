# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    availability,
    booking_event,
    client,
    service,
    service_pricing,
    staff,
)

__all__ = [
    "appointment",
    "availability",
    "booking_event",
    "client",
    "service",
    "service_pricing",
    "staff",
]
