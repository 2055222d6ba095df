import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base
from petbooking.utils.dates import to_minutes


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that hold a staff member's time
ACTIVE_STATUSES = (
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.COMPLETED.value,
)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.COMPLETED: [],  # Final state
    AppointmentStatus.CANCELLED: [],  # Final state
}


class Appointment(Base):
    """Booked visit: one or two services performed by one or two staff members."""

    __tablename__ = "appointments"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)

    # Participants
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    pet_id = Column(Integer, ForeignKey("pets.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    secondary_service_id = Column(Integer, ForeignKey("services.id"), nullable=True)

    # Scheduling details, in business-local date and time of day
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes, all services summed

    # Pricing
    total_price = Column(Numeric(10, 2), nullable=False)
    extra_fee = Column(Numeric(10, 2), nullable=False, default=0)

    # Status management
    status = Column(
        String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), server_default=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)

    # Override tracking
    is_override = Column(Boolean, default=False, nullable=False)
    override_reason = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("duration > 0", name="check_positive_duration"),
        CheckConstraint("total_price >= 0", name="check_non_negative_price"),
        CheckConstraint("extra_fee >= 0", name="check_non_negative_extra_fee"),
        Index("ix_appointments_date_time", "date", "time"),
    )

    # Relationships
    client = relationship("Client")
    pet = relationship("Pet")
    service = relationship("Service", foreign_keys=[service_id])
    secondary_service = relationship("Service", foreign_keys=[secondary_service_id])
    staff_assignments = relationship(
        "AppointmentStaff",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentStaff.id",
    )
    events = relationship(
        "BookingEvent", back_populates="appointment", order_by="BookingEvent.id"
    )

    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        """Check if appointment can transition to the new status."""
        current = AppointmentStatus(self.status)
        return new_status in ALLOWED_TRANSITIONS.get(current, [])

    def transition_to(self, new_status: AppointmentStatus) -> bool:
        """Transition appointment to new status with validation."""
        if not self.can_transition_to(new_status):
            return False

        now = datetime.now(timezone.utc)
        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = now

        if new_status == AppointmentStatus.CANCELLED:
            self.cancelled_at = now

        return True

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def start_minute(self) -> int:
        return to_minutes(self.time)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration

    @property
    def staff_ids(self) -> list[int]:
        return [assignment.staff_id for assignment in self.staff_assignments]

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, status='{self.status}', "
            f"date='{self.date}', time='{self.time}', duration={self.duration}, "
            f"client_id={self.client_id})>"
        )


class AppointmentStaff(Base):
    """Which staff member performs which service of an appointment."""

    __tablename__ = "appointment_staff"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id"), nullable=False, index=True
    )
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    # Comma separated StaffRole values the staff member covers for this service
    roles = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "appointment_id", "staff_id", "service_id", name="uq_appointment_staff"
        ),
    )

    appointment = relationship("Appointment", back_populates="staff_assignments")
    staff = relationship("Staff")
    service = relationship("Service")

    def __repr__(self):
        return (
            f"<AppointmentStaff(appointment_id={self.appointment_id}, "
            f"staff_id={self.staff_id}, service_id={self.service_id})>"
        )


def override_note(reason: Optional[str], actor: Optional[str]) -> str:
    """Line appended to an appointment's notes when it was booked over a conflict."""
    who = actor or "unknown"
    return f"[override by {who}] {reason or 'conflict override'}"
