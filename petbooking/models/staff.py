import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base


class StaffRole(str, enum.Enum):
    """Capabilities a service may require from the staff member performing it."""

    BATHING = "bathing"
    GROOMING = "grooming"
    VETERINARY = "veterinary"


# Canonical order used whenever roles are listed
ROLE_ORDER = (StaffRole.BATHING, StaffRole.GROOMING, StaffRole.VETERINARY)


class Staff(Base):
    """Staff member with capability flags. Deactivated, never deleted."""

    __tablename__ = "staff"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=True)

    # Capabilities
    can_bathe = Column(Boolean, default=False, nullable=False)
    can_groom = Column(Boolean, default=False, nullable=False)
    can_vet = Column(Boolean, default=False, nullable=False)

    # Single-location filter
    location = Column(String(100), nullable=True, index=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Bumped by every booking write; the UPDATE serializes commits per staff member
    booking_seq = Column(Integer, default=0, server_default="0", nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    availability = relationship(
        "StaffAvailability", back_populates="staff", cascade="all, delete-orphan"
    )

    @property
    def roles(self) -> set[StaffRole]:
        roles = set()
        if self.can_bathe:
            roles.add(StaffRole.BATHING)
        if self.can_groom:
            roles.add(StaffRole.GROOMING)
        if self.can_vet:
            roles.add(StaffRole.VETERINARY)
        return roles

    def has_roles(self, required) -> bool:
        return set(required) <= self.roles

    def __repr__(self):
        return (
            f"<Staff(id={self.id}, name='{self.name}', "
            f"roles={sorted(r.value for r in self.roles)}, active={self.is_active})>"
        )
