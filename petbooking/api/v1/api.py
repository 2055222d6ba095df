from fastapi import APIRouter

from petbooking.api.v1.endpoints import (
    appointments,
    availability,
    scheduling,
    services,
    staff,
)

api_router = APIRouter()

# Calendar and conflict endpoints
api_router.include_router(scheduling.router, prefix="/scheduling", tags=["scheduling"])

# Staff availability management
api_router.include_router(
    availability.router, prefix="/availability", tags=["availability"]
)

# Booking commit and appointment lifecycle
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)

# Service catalogue
api_router.include_router(services.router, prefix="/services", tags=["services"])

# Staff directory
api_router.include_router(staff.router, prefix="/staff", tags=["staff"])
