"""Database models for the application."""

from app.models.appointment import (
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AppointmentTimelineEntry,
    PaymentStatus,
    ScheduleDay,
)
from app.models.base import Base
from app.models.diagnostic_scan import DiagnosticScan
from app.models.invoice import Invoice, InvoiceStatus
from app.models.service import Service, ServiceCategory
from app.models.service_history import ServiceHistory
from app.models.user import User, UserRole
from app.models.vehicle import Vehicle

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Vehicle",
    "Service",
    "ServiceCategory",
    "Appointment",
    "AppointmentStatus",
    "AppointmentPriority",
    "AppointmentTimelineEntry",
    "PaymentStatus",
    "ScheduleDay",
    "ServiceHistory",
    "DiagnosticScan",
    "Invoice",
    "InvoiceStatus",
]
