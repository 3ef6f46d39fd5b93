"""Appointment model, its timeline entries and the per-day booking lock row."""

import enum
import re
from datetime import datetime, time
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.models.base import Base, TimestampMixin, utcnow
from sqlalchemy import Boolean, Column, Date, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Table, Text
from sqlalchemy.orm import relationship, validates

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
BAYS = ("bay1", "bay2", "bay3", "bay4", "bay5")


class AppointmentStatus(str, enum.Enum):
    """Appointment status enum."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"


# Statuses that occupy a bay for the day
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)

PROGRESS_BY_STATUS = {
    AppointmentStatus.SCHEDULED: 10,
    AppointmentStatus.CONFIRMED: 20,
    AppointmentStatus.IN_PROGRESS: 60,
    AppointmentStatus.COMPLETED: 100,
    AppointmentStatus.CANCELLED: 0,
    AppointmentStatus.NO_SHOW: 0,
}


def _enum_column(enum_cls, **kwargs):
    return Column(
        SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False),
        **kwargs,
    )


appointment_services = Table(
    "appointment_services",
    Base.metadata,
    Column("appointment_id", Integer, ForeignKey("appointments.id"), primary_key=True),
    Column("service_id", Integer, ForeignKey("services.id"), primary_key=True),
)


class ScheduleDay(Base):
    """One row per calendar day; locked while checking same-day capacity."""

    __tablename__ = "schedule_days"

    day = Column(Date, primary_key=True)


class AppointmentTimelineEntry(Base):
    """Immutable, timestamped status-change record of an appointment."""

    __tablename__ = "appointment_timeline_entries"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    status = Column(String(20), nullable=False)
    description = Column(String(500), nullable=False)
    notification_sent = Column(Boolean, default=False, nullable=False)

    appointment = relationship("Appointment", back_populates="timeline")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "description": self.description,
            "notificationSent": self.notification_sent,
        }


class Appointment(Base, TimestampMixin):
    """Appointment model.

    Stores:
    - Customer, vehicle and selected services
    - Calendar date plus ``HH:MM`` time of day, estimated duration
    - Bay and technician assignment
    - Status with an append-only timeline of every status change
    - Estimated/actual cost and payment status

    ``status`` only changes through ``add_timeline_entry`` so the latest
    timeline entry always matches the current status.
    """

    __tablename__ = "appointments"

    __table_args__ = (
        Index("ix_appointments_customer_date", "customer_id", "appointment_date"),
        Index("ix_appointments_status_date", "status", "appointment_date"),
        Index("ix_appointments_bay_date", "bay", "appointment_date"),
    )

    # Primary Identity
    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)

    # Scheduling
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(String(5), nullable=False)
    estimated_duration = Column(Integer, default=60, nullable=False)  # minutes
    priority = _enum_column(AppointmentPriority, default=AppointmentPriority.NORMAL, nullable=False)
    bay = Column(String(10))
    assigned_technician_id = Column(Integer, ForeignKey("users.id"))

    # Notes
    customer_concerns = Column(Text)
    technician_notes = Column(Text)

    # Status & Workflow
    status = _enum_column(
        AppointmentStatus, default=AppointmentStatus.SCHEDULED, nullable=False, index=True
    )

    # Financials
    estimated_cost = Column(Numeric(10, 2), default=0)
    actual_cost = Column(Numeric(10, 2), default=0)
    payment_status = _enum_column(PaymentStatus, default=PaymentStatus.PENDING, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    customer = relationship(
        "User", back_populates="appointments", foreign_keys=[customer_id], lazy="selectin"
    )
    assigned_technician = relationship("User", foreign_keys=[assigned_technician_id])
    vehicle = relationship("Vehicle", back_populates="appointments", lazy="selectin")
    services = relationship("Service", secondary=appointment_services, lazy="selectin")
    timeline = relationship(
        "AppointmentTimelineEntry",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentTimelineEntry.id",
        lazy="selectin",
    )

    @validates("appointment_time")
    def validate_appointment_time(self, key, value):
        if not value or not TIME_PATTERN.match(value):
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM")
        return value

    @validates("bay")
    def validate_bay(self, key, value):
        if value is not None and value not in BAYS:
            raise ValueError(f"Invalid bay: {value}")
        return value

    @validates("estimated_duration")
    def validate_estimated_duration(self, key, value):
        if value is not None and value < 15:
            raise ValueError("Duration must be at least 15 minutes")
        return value

    def add_timeline_entry(self, status: AppointmentStatus, description: str) -> AppointmentTimelineEntry:
        """Append a status change and make it the current status."""
        status = AppointmentStatus(status)
        entry = AppointmentTimelineEntry(
            timestamp=utcnow(),
            status=status.value,
            description=description,
            notification_sent=False,
        )
        self.timeline.append(entry)
        self.status = status
        return entry

    def progress_percentage(self) -> int:
        try:
            return PROGRESS_BY_STATUS.get(AppointmentStatus(self.status), 0)
        except ValueError:
            return 0

    def scheduled_datetime(self, tz: Optional[ZoneInfo] = None) -> datetime:
        """Combine date and ``HH:MM`` into an aware datetime in the shop time zone."""
        tz = tz or ZoneInfo(settings.SHOP_TIMEZONE)
        hours, minutes = (int(part) for part in self.appointment_time.split(":"))
        return datetime.combine(self.appointment_date, time(hours, minutes), tzinfo=tz)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True only for a still-``scheduled`` appointment whose start time has passed."""
        tz = ZoneInfo(settings.SHOP_TIMEZONE)
        now = now or datetime.now(tz)
        if now.tzinfo is None:
            now = now.replace(tzinfo=tz)
        return now > self.scheduled_datetime(tz) and self.status == AppointmentStatus.SCHEDULED

    @property
    def display_date_time(self) -> str:
        return f"{self.appointment_date.strftime('%a %b %d %Y')} at {self.appointment_time}"

    def to_dict(self) -> Dict[str, Any]:
        customer = self.customer
        vehicle = self.vehicle
        return {
            "id": self.id,
            "customer": (
                {
                    "id": customer.id,
                    "firstName": customer.first_name,
                    "lastName": customer.last_name,
                    "email": customer.email,
                    "phone": customer.phone,
                }
                if customer
                else None
            ),
            "vehicle": (
                {
                    "id": vehicle.id,
                    "year": vehicle.year,
                    "make": vehicle.make,
                    "model": vehicle.model,
                    "vin": vehicle.vin,
                    "licensePlate": vehicle.license_plate,
                }
                if vehicle
                else None
            ),
            "services": [
                {
                    "id": s.id,
                    "name": s.name,
                    "category": s.category,
                    "basePrice": float(s.base_price),
                    "estimatedDuration": s.estimated_duration,
                }
                for s in self.services
            ],
            "appointmentDate": self.appointment_date.isoformat(),
            "appointmentTime": self.appointment_time,
            "displayDateTime": self.display_date_time,
            "estimatedDuration": self.estimated_duration,
            "status": AppointmentStatus(self.status).value,
            "priority": AppointmentPriority(self.priority).value,
            "bay": self.bay,
            "assignedTechnicianId": self.assigned_technician_id,
            "customerConcerns": self.customer_concerns,
            "technicianNotes": self.technician_notes,
            "timeline": [entry.to_dict() for entry in self.timeline],
            "estimatedCost": float(self.estimated_cost or 0),
            "actualCost": float(self.actual_cost or 0),
            "paymentStatus": PaymentStatus(self.payment_status).value,
            "progressPercentage": self.progress_percentage(),
            "isOverdue": self.is_overdue(),
        }

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, customer_id={self.customer_id}, "
            f"date='{self.appointment_date} {self.appointment_time}', status='{self.status}')>"
        )
