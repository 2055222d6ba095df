import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base


class BookingEventType(str, enum.Enum):
    CREATED = "created"
    OVERRIDE = "override"
    STATUS_CHANGED = "status_changed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class BookingEvent(Base):
    """Append-only audit trail of what happened to an appointment and who did it."""

    __tablename__ = "booking_events"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id"), nullable=False, index=True
    )
    event_type = Column(String(30), nullable=False)
    actor = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", back_populates="events")

    def __repr__(self):
        return (
            f"<BookingEvent(appointment_id={self.appointment_id}, "
            f"type='{self.event_type}', actor='{self.actor}')>"
        )
