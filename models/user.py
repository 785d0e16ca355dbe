from enum import Enum

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.types import Enum as SAEnum

from models.base_model import Base, BaseModel


class UserRole(str, Enum):
    PI_LAB_MANAGER = "PI_LAB_MANAGER"
    POSTDOC_STAFF = "POSTDOC_STAFF"
    GRAD_STUDENT = "GRAD_STUDENT"
    UNDERGRAD_TECH = "UNDERGRAD_TECH"


class User(BaseModel, Base):
    __tablename__ = "users"
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(
        SAEnum(UserRole, name="user_role", native_enum=False),
        nullable=False,
        default=UserRole.GRAD_STUDENT,
    )
    lab_affiliation = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_active = Column(DateTime(timezone=True), nullable=True)

    bookings = relationship("Booking", back_populates="user", passive_deletes=True)

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")
