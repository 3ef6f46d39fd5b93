"""Invoice issuing, status workflow and overdue sweep."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from app.config import settings
from app.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from app.models.invoice import Invoice, InvoiceStatus
from app.services import appointment_lifecycle, invoices

ITEMS = [
    {"type": "service", "description": "Synthetic Oil Change", "quantity": 1, "unitPrice": 89.99},
    {"type": "part", "description": "Oil filter", "quantity": 2, "unitPrice": 12.5},
    {"type": "labor", "description": "Inspection", "quantity": 0.5, "unitPrice": 120},
]


@pytest_asyncio.fixture
async def appointment(db_session, customer, vehicle, oil_change, next_week):
    return await appointment_lifecycle.create_appointment(
        db_session, customer, vehicle.id, [oil_change.id], next_week, "10:00"
    )


async def _draft(db_session, staff_user, appointment, **kwargs):
    return await invoices.create_invoice(db_session, staff_user, appointment.id, ITEMS, **kwargs)


def test_line_items_get_totals():
    invoice = Invoice(line_items=ITEMS, tax=Decimal("15.60"), discount=Decimal("10"))
    invoice.recalculate_totals()

    assert [item["totalPrice"] for item in invoice.line_items] == [89.99, 25.0, 60.0]
    assert invoice.subtotal == Decimal("174.99")
    assert invoice.total == Decimal("180.59")


@pytest.mark.parametrize(
    "item",
    [
        {"type": "fee", "description": "x", "quantity": 1, "unitPrice": 1},
        {"type": "part", "description": "x", "quantity": 0, "unitPrice": 1},
        {"type": "part", "description": "x", "quantity": 1, "unitPrice": -1},
    ],
)
def test_invalid_line_items(item):
    with pytest.raises(ValueError):
        Invoice(line_items=[item])


@pytest.mark.parametrize(
    "current,requested,allowed",
    [
        ("draft", "sent", True),
        ("draft", "paid", False),
        ("sent", "paid", True),
        ("sent", "overdue", True),
        ("overdue", "paid", True),
        ("paid", "cancelled", False),
        ("cancelled", "draft", False),
    ],
)
def test_invoice_transition_table(current, requested, allowed):
    assert invoices.is_invoice_transition_allowed(current, requested) is allowed


@pytest.mark.asyncio
async def test_create_invoice_from_appointment(db_session, staff_user, customer, vehicle, appointment):
    invoice = await _draft(db_session, staff_user, appointment, tax=22.75, notes="Thanks!")

    assert invoice.invoice_number == f"INV-{invoices.INVOICE_NUMBER_BASE + invoice.id}"
    assert invoice.customer_id == customer.id
    assert invoice.vehicle_id == vehicle.id
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.subtotal == Decimal("174.99")
    assert invoice.total == Decimal("197.74")
    assert invoice.due_date == date.today() + timedelta(days=settings.INVOICE_DUE_DAYS)
    assert invoice.terms == settings.INVOICE_DEFAULT_TERMS
    assert invoice.to_dict()["createdBy"] == staff_user.id


@pytest.mark.asyncio
async def test_create_invoice_validation(db_session, staff_user, customer, appointment):
    with pytest.raises(AuthorizationError):
        await _draft(db_session, customer, appointment)
    with pytest.raises(ValidationError):
        await invoices.create_invoice(db_session, staff_user, appointment.id, [])
    with pytest.raises(ValidationError):
        await _draft(db_session, staff_user, appointment, discount=-5)
    with pytest.raises(NotFoundError):
        await invoices.create_invoice(db_session, staff_user, 999, ITEMS)


@pytest.mark.asyncio
async def test_send_then_pay(db_session, hub, staff_user, appointment):
    invoice = await _draft(db_session, staff_user, appointment)

    sent = await invoices.send_invoice(db_session, invoice.id, staff_user, hub=hub)
    assert sent.status == InvoiceStatus.SENT
    assert sent.sent_at is not None

    with pytest.raises(StateError, match="Only draft invoices can be sent"):
        await invoices.send_invoice(db_session, invoice.id, staff_user)

    paid = await invoices.update_invoice_status(db_session, invoice.id, staff_user, "paid", payment_method="card")
    assert paid.status == InvoiceStatus.PAID
    assert paid.payment_method == "card"
    assert paid.payment_date is not None

    with pytest.raises(StateError, match="Cannot change invoice status from paid to cancelled"):
        await invoices.update_invoice_status(db_session, invoice.id, staff_user, "cancelled")


@pytest.mark.asyncio
async def test_customers_see_only_their_invoices(db_session, staff_user, customer, other_customer, appointment):
    invoice = await _draft(db_session, staff_user, appointment)

    assert (await invoices.get_invoice(db_session, invoice.id, customer)).id == invoice.id
    with pytest.raises(AuthorizationError, match="Access denied to this invoice"):
        await invoices.get_invoice(db_session, invoice.id, other_customer)

    mine, total = await invoices.list_invoices(db_session, customer)
    theirs, other_total = await invoices.list_invoices(db_session, other_customer)
    assert total == 1 and mine[0].id == invoice.id
    assert other_total == 0 and theirs == []

    drafts, draft_total = await invoices.list_invoices(db_session, staff_user, status="draft")
    assert draft_total == 1
    with pytest.raises(ValidationError):
        await invoices.list_invoices(db_session, staff_user, status="lost")


@pytest.mark.asyncio
async def test_mark_overdue(db_session, staff_user, appointment):
    overdue = await _draft(db_session, staff_user, appointment, due_date=date.today() - timedelta(days=1))
    current = await _draft(db_session, staff_user, appointment, due_date=date.today() + timedelta(days=5))
    never_sent = await _draft(db_session, staff_user, appointment, due_date=date.today() - timedelta(days=1))
    for invoice in (overdue, current):
        await invoices.send_invoice(db_session, invoice.id, staff_user)

    assert await invoices.mark_overdue_invoices(db_session) == 1

    assert (await invoices.get_invoice(db_session, overdue.id, staff_user)).status == InvoiceStatus.OVERDUE
    assert (await invoices.get_invoice(db_session, current.id, staff_user)).status == InvoiceStatus.SENT
    assert (await invoices.get_invoice(db_session, never_sent.id, staff_user)).status == InvoiceStatus.DRAFT


@pytest.mark.asyncio
async def test_summary_and_delete(db_session, staff_user, admin_user, appointment):
    paid = await _draft(db_session, staff_user, appointment)
    await invoices.send_invoice(db_session, paid.id, staff_user)
    await invoices.update_invoice_status(db_session, paid.id, staff_user, "paid")
    pending = await _draft(db_session, staff_user, appointment)
    await invoices.send_invoice(db_session, pending.id, staff_user)
    draft = await _draft(db_session, staff_user, appointment)

    summary = await invoices.invoice_summary(db_session, staff_user)
    assert summary["total"] == 3
    assert summary["paid"] == 1 and summary["sent"] == 1 and summary["draft"] == 1
    assert summary["totalRevenue"] == pytest.approx(174.99)
    assert summary["pendingRevenue"] == pytest.approx(174.99)

    with pytest.raises(AuthorizationError):
        await invoices.delete_invoice(db_session, draft.id, staff_user)
    with pytest.raises(StateError, match="Can only delete draft invoices"):
        await invoices.delete_invoice(db_session, paid.id, admin_user)

    await invoices.delete_invoice(db_session, draft.id, admin_user)
    with pytest.raises(NotFoundError):
        await invoices.get_invoice(db_session, draft.id, admin_user)
