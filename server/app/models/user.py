"""User model (customers and shop staff)."""

import enum
import re

from app.models.base import Base, TimestampMixin
from sqlalchemy import Boolean, Column
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import relationship, validates


class UserRole(str, enum.Enum):
    """User role enum."""

    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


STAFF_ROLES = (UserRole.STAFF, UserRole.ADMIN)


class User(Base, TimestampMixin):
    """User model for customers, technicians and administrators.

    Customers own vehicles and book appointments; staff and admins manage
    appointments, run diagnostic scans and issue invoices.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Contact Information
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20))

    # Personal Information
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)

    # Access
    role = Column(
        SQLEnum(UserRole, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=UserRole.CUSTOMER,
        nullable=False,
        index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    notes = Column(Text)

    # Relationships
    vehicles = relationship(
        "Vehicle", back_populates="owner", cascade="all, delete-orphan", lazy="selectin"
    )
    appointments = relationship(
        "Appointment",
        back_populates="customer",
        foreign_keys="Appointment.customer_id",
    )

    @validates("phone")
    def validate_phone(self, key, value):
        """Validate phone number characters and digit count."""
        if not value:
            return value

        if not re.match(r"^\+?[\d\s\-\(\)]+$", value):
            raise ValueError(f"Phone number contains invalid characters: {value}")

        digits_only = re.sub(r"\D", "", value)
        if len(digits_only) < 10 or len(digits_only) > 15:
            raise ValueError(f"Phone number must contain 10-15 digits, got {len(digits_only)}")

        return value

    @validates("email")
    def validate_email(self, key, value):
        """Validate email format; normalize to lowercase."""
        if not value:
            raise ValueError("Email is required")

        value = value.strip().lower()
        if len(value) > 255:
            raise ValueError(f"Email must be <= 255 characters, got {len(value)}")

        email_pattern = (
            r"^[a-z0-9]([a-z0-9._+-]*[a-z0-9])?@[a-z0-9]([a-z0-9.-]*[a-z0-9])?\.[a-z]{2,}$"
        )
        if not re.match(email_pattern, value):
            raise ValueError(f"Invalid email format: {value}")

        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
