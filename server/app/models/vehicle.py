"""Vehicle model."""

import re
from datetime import date
from typing import Optional

from app.models.base import Base, TimestampMixin
from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates

VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


class Vehicle(Base, TimestampMixin):
    """Vehicle model for storing vehicle information.

    Stores:
    - Vehicle identification (VIN, license plate)
    - Vehicle specifications (make, model, year, trim, color)
    - Ownership
    - Mileage and last service tracking
    - Append-only service and diagnostic history logs
    """

    __tablename__ = "vehicles"

    # Primary Identity
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Vehicle Identification
    vin = Column(String(17), unique=True, nullable=False, index=True)
    license_plate = Column(String(20), index=True)

    # Vehicle Details
    year = Column(Integer, nullable=False)
    make = Column(String(50), nullable=False)
    model = Column(String(50), nullable=False)
    trim = Column(String(50))
    color = Column(String(30))

    # Service Information
    mileage = Column(Integer)
    last_service_date = Column(Date)

    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(Text)

    # Relationships
    owner = relationship("User", back_populates="vehicles")
    appointments = relationship("Appointment", back_populates="vehicle")
    service_history = relationship(
        "ServiceHistory",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        order_by="ServiceHistory.id",
        lazy="selectin",
    )
    diagnostic_history = relationship(
        "DiagnosticScan",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        order_by="DiagnosticScan.id",
        lazy="selectin",
    )

    @validates("vin")
    def validate_vin(self, key, value):
        """Validate VIN format (17 characters, no I/O/Q), uppercase it.

        A VIN is immutable once a valid value has been stored.
        """
        if not value:
            raise ValueError("VIN cannot be empty")

        value = value.strip().upper()

        if len(value) != 17:
            raise ValueError(f"VIN must be exactly 17 characters, got {len(value)}")

        if not VIN_PATTERN.match(value):
            raise ValueError(
                f"Invalid VIN format: {value}. VIN must contain only letters (except I, O, Q) and numbers"
            )

        if self.vin and self.vin != value:
            raise ValueError("VIN cannot be changed once set")

        return value

    @validates("license_plate")
    def validate_license_plate(self, key, value):
        return value.strip().upper() if value else value

    @validates("mileage")
    def validate_mileage(self, key, value):
        if value is not None and (value < 0 or value > 1_000_000):
            raise ValueError(f"Mileage out of range: {value}")
        return value

    @property
    def display_name(self) -> str:
        return f"{self.year} {self.make} {self.model}"

    def age(self, today: Optional[date] = None) -> int:
        """Vehicle age in years relative to ``today``."""
        today = today or date.today()
        return today.year - self.year

    def __repr__(self):
        return f"<Vehicle(id={self.id}, vin='{self.vin}', {self.year} {self.make} {self.model})>"
