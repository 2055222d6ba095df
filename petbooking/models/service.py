import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base
from petbooking.models.staff import ROLE_ORDER, StaffRole


class ServiceType(str, enum.Enum):
    GROOMING = "grooming"
    VETERINARY = "veterinary"
    OTHER = "other"


class Service(Base):
    """Bookable offering with default price/duration and required staff roles."""

    __tablename__ = "services"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    service_type = Column(String(20), nullable=False, default=ServiceType.OTHER.value)

    # Defaults, overridden per breed/size by ServicePricing
    base_price = Column(Numeric(10, 2), nullable=False)
    default_duration = Column(Integer, nullable=False)  # minutes

    # Required staff roles
    requires_bath = Column(Boolean, default=False, nullable=False)
    requires_grooming = Column(Boolean, default=False, nullable=False)
    requires_vet = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("default_duration > 0", name="check_positive_default_duration"),
        CheckConstraint("base_price >= 0", name="check_non_negative_base_price"),
    )

    pricing = relationship(
        "ServicePricing", back_populates="service", cascade="all, delete-orphan"
    )

    @property
    def required_roles(self) -> list[StaffRole]:
        flags = {
            StaffRole.BATHING: self.requires_bath,
            StaffRole.GROOMING: self.requires_grooming,
            StaffRole.VETERINARY: self.requires_vet,
        }
        return [role for role in ROLE_ORDER if flags[role]]

    @property
    def requires_staff(self) -> bool:
        return bool(self.required_roles)

    def __repr__(self):
        return (
            f"<Service(id={self.id}, name='{self.name}', "
            f"duration={self.default_duration}min, price={self.base_price})>"
        )
