from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppointmentStatusSchema(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingRequest(BaseModel):
    """Everything a booking flow collects before the commit.

    ``provider_ids`` is ordered: the primary service's staff member first,
    the secondary service's second.
    """

    client_id: Optional[int] = None
    client_user_id: Optional[str] = None
    pet_id: int
    primary_service_id: int
    secondary_service_id: Optional[int] = None
    provider_ids: List[int] = Field(default_factory=list, max_length=2)
    date: date
    time: time
    notes: Optional[str] = None
    extra_fee: Decimal = Field(default=Decimal("0"), ge=0)
    override_conflicts: bool = False
    override_availability: bool = False
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def require_client_reference(self):
        if self.client_id is None and not self.client_user_id:
            raise ValueError("client_id or client_user_id is required")
        return self

    @property
    def primary_staff_id(self) -> Optional[int]:
        return self.provider_ids[0] if self.provider_ids else None

    @property
    def secondary_staff_id(self) -> Optional[int]:
        return self.provider_ids[1] if len(self.provider_ids) > 1 else None

    def fingerprint(self) -> str:
        """Stable key identifying the same logical request across resubmissions."""
        client = self.client_id if self.client_id is not None else self.client_user_id
        return ":".join(
            str(part)
            for part in (
                client,
                self.pet_id,
                self.primary_service_id,
                self.secondary_service_id or "-",
                ",".join(str(p) for p in self.provider_ids) or "-",
                self.date.isoformat(),
                self.time.strftime("%H:%M:%S"),
            )
        )


class BookingResult(BaseModel):
    appointment_id: int
    appointment_uuid: UUID
    date: date
    time: time
    duration_minutes: int
    total_price: Decimal
    overridden: bool = False
    override_reason: Optional[str] = None
    duplicate: bool = False


class AppointmentStaffRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    staff_id: int
    service_id: int
    roles: Optional[str] = None


class BookingEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    actor: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    client_id: int
    pet_id: int
    service_id: int
    secondary_service_id: Optional[int] = None
    date: date
    time: time
    duration: int
    total_price: Decimal
    extra_fee: Decimal
    status: AppointmentStatusSchema
    notes: Optional[str] = None
    is_override: bool
    override_reason: Optional[str] = None
    created_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    staff_assignments: List[AppointmentStaffRead] = Field(default_factory=list)
    events: List[BookingEventRead] = Field(default_factory=list)


class StatusTransitionRequest(BaseModel):
    new_status: AppointmentStatusSchema
    actor: Optional[str] = None
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    actor: Optional[str] = None
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    """Admin edit of a booking: new date and time, optionally a new extra fee."""

    date: date
    time: time
    extra_fee: Optional[Decimal] = Field(default=None, ge=0)
    admin_notes: Optional[str] = None
    edit_reason: Optional[str] = None
    edited_by: Optional[str] = None
    override_conflicts: bool = False
    override_availability: bool = False
