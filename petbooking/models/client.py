import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from petbooking.core.database import Base


class Client(Base):
    """Pet owner. Only the fields the booking core reads are mapped here."""

    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    # Identity in the external auth provider
    user_id = Column(String(255), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    pets = relationship("Pet", back_populates="client")

    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}')>"


class Pet(Base):
    __tablename__ = "pets"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    breed = Column(String(100), nullable=True)
    size = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    client = relationship("Client", back_populates="pets")

    def __repr__(self):
        return (
            f"<Pet(id={self.id}, name='{self.name}', breed='{self.breed}', "
            f"size='{self.size}')>"
        )
