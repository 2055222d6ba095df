from datetime import date, time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    UNAVAILABLE = "unavailable"


class StaffAssignment(BaseModel):
    staff_id: int
    service_id: int


class BusyInterval(BaseModel):
    """A staff member's held window, in minutes since midnight, half-open."""

    staff_id: int
    appointment_id: Optional[int] = None
    start_minute: int
    end_minute: int


class ConflictCheckRequest(BaseModel):
    date: date
    start_time: time
    primary_staff_id: int
    primary_service_id: int
    secondary_staff_id: Optional[int] = None
    secondary_service_id: Optional[int] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    allow_override: bool = False
    allow_unavailable: bool = False

    @model_validator(mode="after")
    def secondary_fields_together(self):
        if (self.secondary_staff_id is None) != (self.secondary_service_id is None):
            raise ValueError(
                "secondary_staff_id and secondary_service_id must be given together"
            )
        return self

    @property
    def assignments(self) -> List[StaffAssignment]:
        assignments = [
            StaffAssignment(
                staff_id=self.primary_staff_id, service_id=self.primary_service_id
            )
        ]
        if self.secondary_staff_id is not None:
            assignments.append(
                StaffAssignment(
                    staff_id=self.secondary_staff_id,
                    service_id=self.secondary_service_id,
                )
            )
        return assignments


class ConflictCheckResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    status: SlotStatus = SlotStatus.AVAILABLE
    overridden: bool = False
    duration_minutes: int = 0
    conflicting_appointment_ids: List[int] = Field(default_factory=list)
    busy_staff_ids: List[int] = Field(default_factory=list)
    unavailable_staff_ids: List[int] = Field(default_factory=list)


class SlotState(BaseModel):
    time: str
    label: str
    status: SlotStatus
    reason: Optional[str] = None
    busy_staff_ids: List[int] = Field(default_factory=list)


class SlotGridResponse(BaseModel):
    date: date
    is_bookable: bool
    duration_minutes: int
    staff_ids: List[int]
    slots: List[SlotState] = Field(default_factory=list)


class AnchorsResponse(BaseModel):
    date: date
    is_bookable: bool
    is_open: bool
    holiday: Optional[str] = None
    anchors: List[str] = Field(default_factory=list)


class NextAvailableSlot(BaseModel):
    date: date
    time: str
    staff_ids: List[int]
    duration_minutes: int


class NextAvailableResponse(BaseModel):
    found: bool
    slot: Optional[NextAvailableSlot] = None
