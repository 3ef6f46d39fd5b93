"""Invoice model."""

import enum
from decimal import Decimal
from typing import Any, Dict

from app.models.base import Base, TimestampMixin
from app.models.service import CENT, to_decimal
from sqlalchemy import JSON, Column, Date, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship, validates

LINE_ITEM_TYPES = ("service", "part", "labor")


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class Invoice(Base, TimestampMixin):
    """Invoice issued for an appointment.

    ``line_items`` holds ``[{"type", "description", "quantity", "unitPrice", "totalPrice"}]``.
    Totals are recomputed from the line items by ``recalculate_totals``.
    """

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(30), unique=True, nullable=False, index=True)

    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"))

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)

    line_items = Column(JSON, default=list, nullable=False)
    subtotal = Column(Numeric(10, 2), default=0, nullable=False)
    tax = Column(Numeric(10, 2), default=0, nullable=False)
    discount = Column(Numeric(10, 2), default=0, nullable=False)
    total = Column(Numeric(10, 2), default=0, nullable=False)

    status = Column(
        SQLEnum(InvoiceStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )
    payment_method = Column(String(30))
    payment_date = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    notes = Column(Text)
    terms = Column(String(255))

    # Relationships
    appointment = relationship("Appointment", lazy="selectin")
    customer = relationship("User", foreign_keys=[customer_id], lazy="selectin")
    vehicle = relationship("Vehicle", lazy="selectin")

    @validates("line_items")
    def validate_line_items(self, key, value):
        normalized = []
        for item in value or []:
            if item.get("type") not in LINE_ITEM_TYPES:
                raise ValueError(f"Invalid line item type: {item.get('type')}")
            quantity = to_decimal(item.get("quantity"))
            unit_price = to_decimal(item.get("unitPrice"))
            if quantity <= 0:
                raise ValueError("Line item quantity must be greater than zero")
            if unit_price < 0:
                raise ValueError("Line item unit price cannot be negative")
            line_total = (quantity * unit_price).quantize(CENT)
            normalized.append({**item, "totalPrice": float(line_total)})
        return normalized

    def recalculate_totals(self) -> None:
        subtotal = sum(
            (to_decimal(i["quantity"]) * to_decimal(i["unitPrice"]) for i in self.line_items or []),
            Decimal("0"),
        )
        self.subtotal = subtotal.quantize(CENT)
        self.total = (self.subtotal + to_decimal(self.tax) - to_decimal(self.discount)).quantize(CENT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "appointmentId": self.appointment_id,
            "customerId": self.customer_id,
            "vehicleId": self.vehicle_id,
            "issueDate": self.issue_date.isoformat(),
            "dueDate": self.due_date.isoformat(),
            "items": self.line_items,
            "subtotal": float(self.subtotal),
            "tax": float(self.tax),
            "discount": float(self.discount),
            "total": float(self.total),
            "status": InvoiceStatus(self.status).value,
            "paymentMethod": self.payment_method,
            "paymentDate": self.payment_date.isoformat() if self.payment_date else None,
            "sentDate": self.sent_at.isoformat() if self.sent_at else None,
            "notes": self.notes,
            "terms": self.terms,
            "createdBy": self.created_by_id,
        }

    def __repr__(self):
        return f"<Invoice(number='{self.invoice_number}', status='{self.status}', total={self.total})>"
