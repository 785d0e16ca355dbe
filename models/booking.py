from enum import Enum

from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import Enum as SAEnum

from models.base_model import BaseModel, Base


class BookingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Forward-only lifecycle; COMPLETED and CANCELLED are terminal
STATUS_TRANSITIONS = {
    BookingStatus.SCHEDULED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


class Booking(BaseModel, Base):
    __tablename__ = "bookings"

    equipment_id = Column(String(36), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Half-open interval [start_time, end_time)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SAEnum(BookingStatus, name="booking_status", native_enum=False),
        nullable=False,
        default=BookingStatus.SCHEDULED,
    )
    purpose = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_pattern = Column(String(64), nullable=True)

    equipment = relationship("Equipment", back_populates="bookings")
    user = relationship("User", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_interval_ordered"),
        Index("ix_bookings_equipment_start", "equipment_id", "start_time"),
        Index("ix_bookings_user", "user_id"),
    )

    def __repr__(self):
        return f"<Booking {self.id} equipment={self.equipment_id} [{self.start_time}, {self.end_time}) {self.status}>"
