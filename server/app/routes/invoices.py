"""Invoice endpoints."""

import math
from typing import Optional

from app.auth import get_current_user, require_roles, require_staff
from app.dependencies import get_hub
from app.models.user import User, UserRole
from app.schemas import InvoiceCreate, InvoiceStatusUpdate
from app.services import invoices
from app.services.database import get_db
from app.services.notifications import NotificationHub
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoices.create_invoice(
        db,
        user,
        appointment_id=body.appointment_id,
        items=[item.model_dump(by_alias=True) for item in body.items],
        due_date=body.due_date,
        tax=body.tax,
        discount=body.discount,
        notes=body.notes,
        terms=body.terms,
    )
    return {"success": True, "message": "Invoice created successfully", "data": {"invoice": invoice.to_dict()}}


@router.get("")
async def list_invoices(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None, alias="customerId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items, total = await invoices.list_invoices(
        db, user, page=page, limit=limit, status=status_filter, customer_id=customer_id
    )
    return {
        "success": True,
        "message": "Invoices retrieved successfully",
        "data": {"invoices": [i.to_dict() for i in items]},
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/stats/summary")
async def invoice_summary(
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    summary = await invoices.invoice_summary(db, user)
    return {"success": True, "message": "Invoice summary retrieved successfully", "data": {"summary": summary}}


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoices.get_invoice(db, invoice_id, user)
    return {"success": True, "message": "Invoice retrieved successfully", "data": {"invoice": invoice.to_dict()}}


@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: int,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    invoice = await invoices.send_invoice(db, invoice_id, user, hub=hub)
    return {"success": True, "message": "Invoice sent successfully", "data": {"invoice": invoice.to_dict()}}


@router.patch("/{invoice_id}/status")
async def update_invoice_status(
    invoice_id: int,
    body: InvoiceStatusUpdate,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    invoice = await invoices.update_invoice_status(
        db,
        invoice_id,
        user,
        body.status,
        payment_method=body.payment_method,
        payment_date=body.payment_date,
        hub=hub,
    )
    return {
        "success": True,
        "message": "Invoice status updated successfully",
        "data": {"invoice": invoice.to_dict()},
    }


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: int,
    user: User = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Delete a draft invoice (admin only)."""
    await invoices.delete_invoice(db, invoice_id, user)
    return {"success": True, "message": "Invoice deleted successfully", "data": None}
