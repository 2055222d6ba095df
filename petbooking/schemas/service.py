from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceTypeSchema(str, Enum):
    GROOMING = "grooming"
    VETERINARY = "veterinary"
    OTHER = "other"


class PriceSource(str, Enum):
    EXACT_MATCH = "exact_match"
    SIZE_FALLBACK = "service_size_fallback"
    SERVICE_DEFAULT = "service_default"


class ServiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    name: str
    description: Optional[str] = None
    service_type: ServiceTypeSchema
    base_price: Decimal
    default_duration: int
    requires_bath: bool
    requires_grooming: bool
    requires_vet: bool
    required_roles: List[str] = Field(default_factory=list)

    @field_validator("required_roles", mode="before")
    @classmethod
    def roles_as_values(cls, v):
        if v is None:
            return []
        return [getattr(role, "value", role) for role in v]


class PricingResult(BaseModel):
    service_id: int
    price: Decimal
    duration_minutes: int
    price_source: PriceSource


class RequiredRolesResponse(BaseModel):
    service_ids: List[int]
    required_roles: List[str]
