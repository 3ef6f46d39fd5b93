"""Appointment endpoints."""

import math
from typing import Optional

from app.auth import get_current_user, require_staff
from app.dependencies import get_hub
from app.models.user import User
from app.schemas import AppointmentCreate, AppointmentReschedule, AppointmentStatusUpdate
from app.services import appointment_lifecycle as lifecycle
from app.services.database import get_db
from app.services.notifications import NotificationHub
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    """Book an appointment for a vehicle."""
    appointment = await lifecycle.create_appointment(
        db,
        user,
        vehicle_id=body.vehicle_id,
        service_ids=body.service_ids,
        appointment_date=body.appointment_date,
        appointment_time=body.appointment_time,
        customer_concerns=body.customer_concerns,
        priority=body.priority,
        hub=hub,
    )
    return {
        "success": True,
        "message": "Appointment created successfully",
        "data": {"appointment": appointment.to_dict()},
    }


@router.get("")
async def list_appointments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None, alias="customerId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    appointments, total = await lifecycle.list_appointments(
        db, user, page=page, limit=limit, status=status_filter, customer_id=customer_id
    )
    return {
        "success": True,
        "message": "Appointments retrieved successfully",
        "data": {"appointments": [a.to_dict() for a in appointments]},
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    appointment = await lifecycle.get_appointment(db, appointment_id, user)
    return {
        "success": True,
        "message": "Appointment retrieved successfully",
        "data": {"appointment": appointment.to_dict()},
    }


@router.patch("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    body: AppointmentStatusUpdate,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    """Staff status change, checked against the allowed transitions."""
    appointment = await lifecycle.change_status(db, appointment_id, user, body.status, body.notes, hub=hub)
    return {
        "success": True,
        "message": "Appointment status updated successfully",
        "data": {"appointment": appointment.to_dict()},
    }


@router.patch("/{appointment_id}/reschedule")
async def reschedule_appointment(
    appointment_id: int,
    body: AppointmentReschedule,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    appointment = await lifecycle.reschedule_appointment(
        db, appointment_id, user, body.appointment_date, body.appointment_time, hub=hub
    )
    return {
        "success": True,
        "message": "Appointment rescheduled successfully",
        "data": {"appointment": appointment.to_dict()},
    }


@router.delete("/{appointment_id}")
async def cancel_appointment(
    appointment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    """Cancel an appointment. The record is kept with status ``cancelled``."""
    appointment = await lifecycle.cancel_appointment(db, appointment_id, user, hub=hub)
    return {
        "success": True,
        "message": "Appointment cancelled successfully",
        "data": {"appointment": appointment.to_dict()},
    }
