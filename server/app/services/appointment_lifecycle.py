"""
Appointment lifecycle: booking, status changes, rescheduling and cancellation.

Every status change goes through ``Appointment.add_timeline_entry`` so the
timeline stays append-only and its last entry always matches ``status``.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.config import settings
from app.errors import (
    AuthorizationError,
    NotFoundError,
    SchedulingConflictError,
    StateError,
    ValidationError,
)
from app.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    ScheduleDay,
)
from app.models.service import Service
from app.models.service_history import ServiceHistory
from app.models.user import User
from app.models.vehicle import Vehicle
from app.services.notifications import STAFF_TOPIC, NotificationHub, user_topic
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}

S = AppointmentStatus

# Allowed targets for the staff status-update path
ALLOWED_TRANSITIONS = {
    S.SCHEDULED: {S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW},
    S.CONFIRMED: {S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW},
    S.IN_PROGRESS: {S.SCHEDULED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: {S.CANCELLED},
    S.NO_SHOW: {S.SCHEDULED, S.CANCELLED, S.NO_SHOW},
}

NO_RESCHEDULE_STATUSES = {S.COMPLETED, S.CANCELLED}


def is_transition_allowed(current, requested) -> bool:
    """Whether ``requested`` may follow ``current`` on the staff update path."""
    try:
        return S(requested) in ALLOWED_TRANSITIONS[S(current)]
    except (ValueError, KeyError):
        return False


def _parse_status(value) -> AppointmentStatus:
    try:
        return S(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def _notify(hub: Optional[NotificationHub], topics: Iterable[str], event: str, data: Dict[str, Any]):
    if hub is None:
        return
    for topic in topics:
        hub.publish(topic, event, data)


def _event_payload(appointment: Appointment) -> Dict[str, Any]:
    return {
        "appointmentId": appointment.id,
        "status": S(appointment.status).value,
        "appointmentDate": appointment.appointment_date.isoformat(),
        "appointmentTime": appointment.appointment_time,
    }


# ============================================================================
# Loading & access control
# ============================================================================


async def load_appointment(db: AsyncSession, appointment_id: int) -> Appointment:
    """Load an appointment with customer, vehicle, services and timeline."""
    stmt = (
        select(Appointment)
        .where(Appointment.id == appointment_id, Appointment.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    appointment = (await db.execute(stmt)).scalar_one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment not found")
    return appointment


def ensure_can_access(actor: User, appointment: Appointment) -> None:
    """Customers may only touch their own appointments; staff may touch any."""
    if actor.is_staff:
        return
    if appointment.customer_id != actor.id:
        raise AuthorizationError("Access denied")


async def get_appointment(db: AsyncSession, appointment_id: int, actor: User) -> Appointment:
    appointment = await load_appointment(db, appointment_id)
    ensure_can_access(actor, appointment)
    return appointment


async def list_appointments(
    db: AsyncSession,
    actor: User,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> Tuple[List[Appointment], int]:
    """Paginated appointments, newest first. Customers only see their own."""
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    filters = [Appointment.is_active.is_(True)]
    if status:
        filters.append(Appointment.status == _parse_status(status))
    if not actor.is_staff:
        filters.append(Appointment.customer_id == actor.id)
    elif customer_id:
        filters.append(Appointment.customer_id == customer_id)

    total = (await db.execute(select(func.count(Appointment.id)).where(*filters))).scalar_one()
    stmt = (
        select(Appointment)
        .where(*filters)
        .order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc(), Appointment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    appointments = list((await db.execute(stmt)).scalars().all())
    return appointments, total


# ============================================================================
# Capacity
# ============================================================================


async def lock_schedule_day(db: AsyncSession, day: date) -> None:
    """Take a row lock on the day's ``schedule_days`` row, creating it if needed.

    Concurrent bookings for the same date queue on this lock until the
    booking transaction commits. SQLite ignores ``FOR UPDATE``.
    """
    stmt = select(ScheduleDay).where(ScheduleDay.day == day).with_for_update()
    if (await db.execute(stmt)).scalar_one_or_none() is not None:
        return

    dialect = db.get_bind().dialect.name
    if dialect in UPSERT_INSERTS:
        insert = UPSERT_INSERTS[dialect]
        await db.execute(insert(ScheduleDay).values(day=day).on_conflict_do_nothing(index_elements=["day"]))
    else:
        db.add(ScheduleDay(day=day))
        await db.flush()

    await db.execute(stmt)


async def count_active_on_date(db: AsyncSession, day: date) -> int:
    stmt = select(func.count(Appointment.id)).where(
        Appointment.appointment_date == day,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.is_active.is_(True),
    )
    return (await db.execute(stmt)).scalar_one()


async def ensure_capacity(db: AsyncSession, day: date) -> None:
    await lock_schedule_day(db, day)
    booked = await count_active_on_date(db, day)
    if booked >= settings.DAILY_BAY_CAPACITY:
        logger.info(f"Capacity reached for {day}: {booked} active appointments")
        raise SchedulingConflictError("No available slots for the selected date")


# ============================================================================
# Operations
# ============================================================================


async def create_appointment(
    db: AsyncSession,
    actor: User,
    vehicle_id: int,
    service_ids: List[int],
    appointment_date: date,
    appointment_time: str,
    customer_concerns: Optional[str] = None,
    priority: str = AppointmentPriority.NORMAL.value,
    hub: Optional[NotificationHub] = None,
) -> Appointment:
    """Book a new appointment in ``scheduled`` status.

    Raises:
        NotFoundError: vehicle or any service missing/inactive
        AuthorizationError: a customer books a vehicle they do not own
        SchedulingConflictError: the day is at capacity
    """
    vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None or not vehicle.is_active:
        raise NotFoundError("Vehicle not found")
    if not actor.is_staff and vehicle.owner_id != actor.id:
        raise AuthorizationError("Access denied")

    unique_ids = list(dict.fromkeys(service_ids))
    services: List[Service] = []
    if unique_ids:
        result = await db.execute(
            select(Service).where(Service.id.in_(unique_ids), Service.is_active.is_(True))
        )
        services = list(result.scalars().all())
    if len(services) != len(unique_ids):
        raise NotFoundError("One or more services not found")

    try:
        priority = AppointmentPriority(priority)
    except ValueError:
        raise ValidationError(f"Invalid priority: {priority}")

    estimated_duration = sum(s.estimated_duration for s in services) or settings.DEFAULT_APPOINTMENT_DURATION
    estimated_cost = sum((s.calculate_total_cost(vehicle) for s in services), Decimal("0"))

    await ensure_capacity(db, appointment_date)

    try:
        appointment = Appointment(
            customer_id=vehicle.owner_id if actor.is_staff else actor.id,
            vehicle_id=vehicle.id,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            estimated_duration=estimated_duration,
            estimated_cost=estimated_cost,
            customer_concerns=customer_concerns,
            priority=priority,
            services=services,
            timeline=[],
        )
    except ValueError as e:
        raise ValidationError(str(e))

    appointment.add_timeline_entry(S.SCHEDULED, "Appointment scheduled")
    db.add(appointment)
    await db.commit()

    appointment = await load_appointment(db, appointment.id)
    logger.info(
        f"Appointment {appointment.id} scheduled for {appointment.display_date_time} "
        f"(vehicle {vehicle.id}, {len(services)} services, est ${estimated_cost})"
    )

    _notify(
        hub,
        [STAFF_TOPIC, user_topic(appointment.customer_id)],
        "appointment_created",
        _event_payload(appointment),
    )
    return appointment


async def record_timeline_entry(
    db: AsyncSession, appointment: Appointment, status, description: str
) -> Appointment:
    """Append a timeline entry, commit and return the reloaded appointment."""
    appointment.add_timeline_entry(status, description)
    await db.commit()
    return await load_appointment(db, appointment.id)


async def change_status(
    db: AsyncSession,
    appointment_id: int,
    actor: User,
    status: str,
    notes: Optional[str] = None,
    hub: Optional[NotificationHub] = None,
) -> Appointment:
    """Staff status update, validated against the transition table."""
    if not actor.is_staff:
        raise AuthorizationError("Insufficient permissions")

    requested = _parse_status(status)
    appointment = await load_appointment(db, appointment_id)
    current = S(appointment.status)

    if not is_transition_allowed(current, requested):
        raise StateError(f"Cannot change status from {current.value} to {requested.value}")

    appointment.add_timeline_entry(requested, notes or f"Status updated to {requested.value}")

    if requested == S.COMPLETED:
        _append_service_history(appointment, actor)

    await db.commit()
    appointment = await load_appointment(db, appointment_id)
    logger.info(f"Appointment {appointment_id} status {current.value} -> {requested.value}")

    _notify(hub, [user_topic(appointment.customer_id)], "appointment_updated", _event_payload(appointment))
    return appointment


def _append_service_history(appointment: Appointment, actor: User) -> None:
    vehicle = appointment.vehicle
    today = date.today()
    vehicle.service_history.append(
        ServiceHistory(
            appointment_id=appointment.id,
            service_date=today,
            mileage=vehicle.mileage,
            services_performed=[s.name for s in appointment.services],
            notes=appointment.technician_notes,
            cost=appointment.actual_cost or appointment.estimated_cost,
            technician=actor.full_name,
        )
    )
    vehicle.last_service_date = today


async def reschedule_appointment(
    db: AsyncSession,
    appointment_id: int,
    actor: User,
    new_date: date,
    new_time: str,
    hub: Optional[NotificationHub] = None,
) -> Appointment:
    """Move an appointment; always reverts the status to ``scheduled``."""
    appointment = await get_appointment(db, appointment_id, actor)

    if S(appointment.status) in NO_RESCHEDULE_STATUSES:
        raise StateError("Cannot reschedule completed or cancelled appointment")

    try:
        appointment.appointment_time = new_time
    except ValueError as e:
        raise ValidationError(str(e))
    appointment.appointment_date = new_date

    appointment = await record_timeline_entry(db, appointment, S.SCHEDULED, "Appointment rescheduled")
    logger.info(f"Appointment {appointment_id} rescheduled to {appointment.display_date_time}")

    _notify(hub, [user_topic(appointment.customer_id)], "appointment_updated", _event_payload(appointment))
    return appointment


async def cancel_appointment(
    db: AsyncSession,
    appointment_id: int,
    actor: User,
    hub: Optional[NotificationHub] = None,
) -> Appointment:
    """Cancel an appointment. The record is kept."""
    appointment = await get_appointment(db, appointment_id, actor)

    if S(appointment.status) == S.COMPLETED:
        raise StateError("Cannot cancel completed appointment")

    appointment = await record_timeline_entry(db, appointment, S.CANCELLED, "Appointment cancelled")
    logger.info(f"Appointment {appointment_id} cancelled by user {actor.id}")

    _notify(
        hub,
        [STAFF_TOPIC, user_topic(appointment.customer_id)],
        "appointment_updated",
        _event_payload(appointment),
    )
    return appointment
