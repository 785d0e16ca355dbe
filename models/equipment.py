from sqlalchemy import Column, String, Integer, Boolean, Text, CheckConstraint, Index
from sqlalchemy.orm import relationship

from models.base_model import BaseModel, Base


class Equipment(BaseModel, Base):
    """A shared, bookable instrument (the booking "resource")."""
    __tablename__ = "equipment"

    name = Column(String(255), nullable=False)
    model = Column(String(255), nullable=True)
    serial_number = Column(String(128), nullable=True, unique=True)
    location = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    maintenance_notes = Column(Text, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    requires_training = Column(Boolean, nullable=False, default=False)
    # Suggested slot length in minutes
    booking_duration = Column(Integer, nullable=False, default=60)

    bookings = relationship("Booking", back_populates="equipment", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("booking_duration >= 1", name="ck_equipment_booking_duration_positive"),
        Index("ix_equipment_name", "name"),
    )
