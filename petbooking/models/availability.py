from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base


class StaffAvailability(Base):
    """One 10-minute sub-slot of a staff member's day, open or closed."""

    __tablename__ = "staff_availability"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    date = Column(Date, nullable=False)
    time_slot = Column(Time, nullable=False)
    available = Column(Boolean, default=True, nullable=False)

    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "staff_id", "date", "time_slot", name="uq_staff_availability_slot"
        ),
        Index("ix_staff_availability_staff_date", "staff_id", "date"),
    )

    staff = relationship("Staff", back_populates="availability")

    def __repr__(self):
        return (
            f"<StaffAvailability(staff_id={self.staff_id}, date={self.date}, "
            f"time_slot={self.time_slot}, available={self.available})>"
        )
