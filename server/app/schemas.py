"""Request bodies for the HTTP API (camelCase on the wire)."""

from datetime import date, datetime
from typing import List, Literal, Optional

from app.models.appointment import TIME_PATTERN
from app.models.diagnostic_scan import DTC_PATTERN
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AppointmentStatusValue = Literal["scheduled", "confirmed", "in-progress", "completed", "cancelled", "no-show"]
PriorityValue = Literal["low", "normal", "high", "urgent"]
InvoiceStatusValue = Literal["draft", "sent", "paid", "overdue", "cancelled"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Valid time format required (HH:MM)")
    return value


# ============================================================================
# Appointments
# ============================================================================


class AppointmentCreate(CamelModel):
    vehicle_id: int
    service_ids: List[int] = Field(min_length=1, alias="services")
    appointment_date: date
    appointment_time: str
    customer_concerns: Optional[str] = Field(default=None, max_length=1000)
    priority: PriorityValue = "normal"

    @field_validator("appointment_time")
    @classmethod
    def check_time(cls, value: str) -> str:
        return _check_time(value)


class AppointmentStatusUpdate(CamelModel):
    status: AppointmentStatusValue
    notes: Optional[str] = Field(default=None, max_length=500)


class AppointmentReschedule(CamelModel):
    appointment_date: date
    appointment_time: str

    @field_validator("appointment_time")
    @classmethod
    def check_time(cls, value: str) -> str:
        return _check_time(value)


# ============================================================================
# AI assistant
# ============================================================================


class ChatRequestContext(CamelModel):
    appointment_id: Optional[int] = None
    vehicle_id: Optional[int] = None


class ChatRequest(CamelModel):
    message: str = Field(min_length=1, max_length=1000)
    session_id: Optional[str] = None
    context: ChatRequestContext = Field(default_factory=ChatRequestContext)

    @field_validator("message")
    @classmethod
    def strip_message(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message must be 1-1000 characters")
        return value


class ExplainRequest(CamelModel):
    code: str
    vehicle_id: Optional[int] = None

    @field_validator("code")
    @classmethod
    def check_code(cls, value: str) -> str:
        if not DTC_PATTERN.match(value.strip()):
            raise ValueError("Invalid diagnostic code format")
        return value.strip().upper()


class RecommendationRequest(CamelModel):
    vehicle_id: int
    symptoms: List[str] = Field(default_factory=list)


# ============================================================================
# Diagnostics
# ============================================================================


class ScanRequest(CamelModel):
    equipment: Optional[str] = None
    technician: Optional[str] = None


class ReportRequest(CamelModel):
    include_history: bool = False


# ============================================================================
# Invoices
# ============================================================================


class InvoiceItem(CamelModel):
    type: Literal["service", "part", "labor"]
    description: str = Field(min_length=1)
    quantity: float = Field(gt=0)
    unit_price: float = Field(ge=0)


class InvoiceCreate(CamelModel):
    appointment_id: int
    items: List[InvoiceItem] = Field(min_length=1)
    due_date: Optional[date] = None
    tax: float = Field(default=0, ge=0)
    discount: float = Field(default=0, ge=0)
    notes: Optional[str] = None
    terms: Optional[str] = None


class InvoiceStatusUpdate(CamelModel):
    status: InvoiceStatusValue
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
