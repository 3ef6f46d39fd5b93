"""Invoice issuing, status workflow and overdue sweep."""

import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings
from app.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from app.models.appointment import Appointment
from app.models.invoice import Invoice, InvoiceStatus
from app.models.service import to_decimal
from app.models.user import User, UserRole
from app.services.notifications import NotificationHub, user_topic
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

INVOICE_NUMBER_BASE = 1000

ALLOWED_INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


def is_invoice_transition_allowed(current, requested) -> bool:
    try:
        return InvoiceStatus(requested) in ALLOWED_INVOICE_TRANSITIONS[InvoiceStatus(current)]
    except (ValueError, KeyError):
        return False


def _require_staff(actor: User) -> None:
    if not actor.is_staff:
        raise AuthorizationError("Insufficient permissions")


async def _load_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
    invoice = (
        await db.execute(
            select(Invoice).where(Invoice.id == invoice_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


async def create_invoice(
    db: AsyncSession,
    actor: User,
    appointment_id: int,
    items: List[Dict[str, Any]],
    due_date: Optional[date] = None,
    tax=0,
    discount=0,
    notes: Optional[str] = None,
    terms: Optional[str] = None,
) -> Invoice:
    """Create a ``draft`` invoice for an appointment's customer and vehicle."""
    _require_staff(actor)

    if not items:
        raise ValidationError("At least one item is required")
    if to_decimal(tax) < 0 or to_decimal(discount) < 0:
        raise ValidationError("Tax and discount cannot be negative")

    appointment = await db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found")

    issue_date = date.today()
    try:
        invoice = Invoice(
            invoice_number=f"PENDING-{secrets.token_hex(6)}",
            appointment_id=appointment.id,
            customer_id=appointment.customer_id,
            vehicle_id=appointment.vehicle_id,
            created_by_id=actor.id,
            issue_date=issue_date,
            due_date=due_date or issue_date + timedelta(days=settings.INVOICE_DUE_DAYS),
            line_items=items,
            tax=to_decimal(tax),
            discount=to_decimal(discount),
            status=InvoiceStatus.DRAFT,
            notes=notes,
            terms=terms or settings.INVOICE_DEFAULT_TERMS,
        )
    except ValueError as e:
        raise ValidationError(str(e))

    invoice.recalculate_totals()
    db.add(invoice)
    await db.flush()
    invoice.invoice_number = f"INV-{INVOICE_NUMBER_BASE + invoice.id}"
    await db.commit()

    logger.info(f"Invoice {invoice.invoice_number} created for appointment {appointment.id} (total ${invoice.total})")
    return invoice


async def get_invoice(db: AsyncSession, invoice_id: int, actor: User) -> Invoice:
    invoice = await _load_invoice(db, invoice_id)
    if not actor.is_staff and invoice.customer_id != actor.id:
        raise AuthorizationError("Access denied to this invoice")
    return invoice


async def list_invoices(
    db: AsyncSession,
    actor: User,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> Tuple[List[Invoice], int]:
    """Paginated invoices, newest first. Customers only see their own."""
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    filters = []
    if actor.role == UserRole.CUSTOMER:
        filters.append(Invoice.customer_id == actor.id)
    elif customer_id:
        filters.append(Invoice.customer_id == customer_id)
    if status:
        try:
            filters.append(Invoice.status == InvoiceStatus(status))
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")

    total = (await db.execute(select(func.count(Invoice.id)).where(*filters))).scalar_one()
    stmt = (
        select(Invoice)
        .where(*filters)
        .order_by(Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all()), total


async def update_invoice_status(
    db: AsyncSession,
    invoice_id: int,
    actor: User,
    status: str,
    payment_method: Optional[str] = None,
    payment_date: Optional[datetime] = None,
    hub: Optional[NotificationHub] = None,
) -> Invoice:
    _require_staff(actor)
    try:
        requested = InvoiceStatus(status)
    except ValueError:
        raise ValidationError("Invalid status")

    invoice = await _load_invoice(db, invoice_id)
    current = InvoiceStatus(invoice.status)
    if not is_invoice_transition_allowed(current, requested):
        raise StateError(f"Cannot change invoice status from {current.value} to {requested.value}")

    invoice.status = requested
    if requested == InvoiceStatus.SENT:
        invoice.sent_at = datetime.now(timezone.utc)
    if requested == InvoiceStatus.PAID:
        invoice.payment_method = payment_method
        invoice.payment_date = payment_date or datetime.now(timezone.utc)

    await db.commit()
    logger.info(f"Invoice {invoice.invoice_number} status {current.value} -> {requested.value}")

    if hub is not None:
        hub.publish(
            user_topic(invoice.customer_id),
            "invoice_updated",
            {"invoiceId": invoice.id, "invoiceNumber": invoice.invoice_number, "status": requested.value},
        )
    return invoice


async def send_invoice(
    db: AsyncSession, invoice_id: int, actor: User, hub: Optional[NotificationHub] = None
) -> Invoice:
    """Send a draft invoice to its customer."""
    _require_staff(actor)
    invoice = await _load_invoice(db, invoice_id)
    if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
        raise StateError("Only draft invoices can be sent")

    invoice = await update_invoice_status(db, invoice_id, actor, InvoiceStatus.SENT.value, hub=hub)
    logger.info(f"Invoice {invoice.invoice_number} sent to customer {invoice.customer_id}")
    return invoice


async def delete_invoice(db: AsyncSession, invoice_id: int, actor: User) -> None:
    """Admins may delete invoices that are still drafts."""
    if actor.role != UserRole.ADMIN:
        raise AuthorizationError("Insufficient permissions")
    invoice = await _load_invoice(db, invoice_id)
    if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
        raise StateError("Can only delete draft invoices")
    await db.delete(invoice)
    await db.commit()
    logger.info(f"Invoice {invoice.invoice_number} deleted")


async def invoice_summary(db: AsyncSession, actor: User) -> Dict[str, Any]:
    """Counts per status plus paid and outstanding revenue."""
    _require_staff(actor)
    rows = (
        await db.execute(
            select(Invoice.status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total), 0)).group_by(
                Invoice.status
            )
        )
    ).all()

    summary: Dict[str, Any] = {s.value: 0 for s in InvoiceStatus}
    revenue = {s.value: Decimal("0") for s in InvoiceStatus}
    for status, count, amount in rows:
        key = InvoiceStatus(status).value
        summary[key] = count
        revenue[key] = to_decimal(amount)

    summary["total"] = sum(summary[s.value] for s in InvoiceStatus)
    summary["totalRevenue"] = float(revenue[InvoiceStatus.PAID.value])
    summary["pendingRevenue"] = float(revenue[InvoiceStatus.SENT.value])
    return summary


async def mark_overdue_invoices(db: AsyncSession, today: Optional[date] = None) -> int:
    """Move ``sent`` invoices past their due date to ``overdue``."""
    today = today or date.today()
    result = await db.execute(select(Invoice).where(Invoice.status == InvoiceStatus.SENT, Invoice.due_date < today))
    invoices = list(result.scalars().all())

    for invoice in invoices:
        invoice.status = InvoiceStatus.OVERDUE
    await db.commit()

    if invoices:
        logger.info(f"Marked {len(invoices)} invoices overdue")
    return len(invoices)
