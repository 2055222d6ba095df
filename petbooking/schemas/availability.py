from datetime import date, time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AvailabilitySlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    staff_id: int
    date: date
    time_slot: time
    available: bool


class BulkGenerateRequest(BaseModel):
    staff_id: int
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    default_available: bool = True

    @model_validator(mode="after")
    def validate_ranges(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.end_time <= self.start_time
        ):
            raise ValueError("end_time must be after start_time")
        return self


class BulkGenerateResponse(BaseModel):
    staff_id: int
    inserted: int


class AnchorToggleRequest(BaseModel):
    staff_id: int
    date: date
    anchor: time
    available: bool


class DayAvailabilityRequest(BaseModel):
    staff_id: int
    date: date
    available: bool


class AvailabilityUpdateResponse(BaseModel):
    staff_id: int
    date: date
    available: bool
    affected: int
    noop: bool = False


class RollAvailabilityRequest(BaseModel):
    horizon_days: Optional[int] = Field(default=None, ge=1, le=365)


class RollAvailabilityResponse(BaseModel):
    start_date: date
    end_date: date
    staff_count: int
    inserted: int


class AvailabilityMatrixResponse(BaseModel):
    date: date
    staff_ids: List[int]
    # time slot "HH:MM:SS" -> staff id -> open
    slots: Dict[str, Dict[int, bool]] = Field(default_factory=dict)
