import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base


class PetSize(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    GIANT = "giant"


class ServicePricing(Base):
    """Price list entry: a service's price and duration for a breed and size.

    ``breed`` is NULL for size-only entries, which act as the fallback for
    breeds without their own row.
    """

    __tablename__ = "service_pricing"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    breed = Column(String(100), nullable=True)
    size = Column(String(20), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration_override = Column(Integer, nullable=True)  # minutes

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("service_id", "breed", "size", name="uq_service_pricing"),
        CheckConstraint("price >= 0", name="check_non_negative_pricing_price"),
    )

    service = relationship("Service", back_populates="pricing")

    def __repr__(self):
        return (
            f"<ServicePricing(service_id={self.service_id}, breed='{self.breed}', "
            f"size='{self.size}', price={self.price})>"
        )
