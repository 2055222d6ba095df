from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StaffRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: UUID
    name: str
    email: Optional[str] = None
    can_bathe: bool
    can_groom: bool
    can_vet: bool
    location: Optional[str] = None
    is_active: bool
    roles: List[str] = Field(default_factory=list)

    @field_validator("roles", mode="before")
    @classmethod
    def roles_as_values(cls, v):
        if v is None:
            return []
        return sorted(getattr(role, "value", role) for role in v)
