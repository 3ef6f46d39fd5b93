"""Diagnostic scan endpoints."""

from typing import Optional

from app.auth import get_current_user, require_staff
from app.dependencies import get_completer, get_hub
from app.models.user import User
from app.schemas import ReportRequest, ScanRequest
from app.services import diagnostics
from app.services.chat_completer import ChatCompleter
from app.services.database import get_db
from app.services.diagnostic_explainer import explain_code
from app.services.notifications import NotificationHub
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.post("/scan/{vehicle_id}")
async def scan_vehicle(
    vehicle_id: int,
    body: Optional[ScanRequest] = None,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    completer: ChatCompleter = Depends(get_completer),
    hub: NotificationHub = Depends(get_hub),
):
    """Run a simulated OBD-II scan and record it in the vehicle's history."""
    body = body or ScanRequest()
    result = await diagnostics.run_scan(
        db,
        vehicle_id,
        user,
        equipment=body.equipment,
        technician=body.technician,
        completer=completer,
        hub=hub,
    )
    return {"success": True, "message": "Diagnostic scan completed successfully", "data": result}


@router.get("/explain/{code}")
async def explain(
    code: str,
    vehicle_id: Optional[int] = Query(None, alias="vehicleId"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    completer: ChatCompleter = Depends(get_completer),
):
    vehicle = await diagnostics.get_vehicle(db, vehicle_id, user) if vehicle_id else None
    explanation = await explain_code(code, vehicle, completer)
    return {
        "success": True,
        "message": "Diagnostic code explained successfully",
        "data": {"code": code.strip().upper(), "explanation": explanation.to_api()},
    }


@router.post("/report/{vehicle_id}")
async def diagnostic_report(
    vehicle_id: int,
    body: Optional[ReportRequest] = None,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    body = body or ReportRequest()
    report = await diagnostics.build_report(db, vehicle_id, user, include_history=body.include_history)
    return {"success": True, "message": "Diagnostic report generated successfully", "data": {"report": report}}


@router.get("/history/{vehicle_id}")
async def diagnostic_history(
    vehicle_id: int,
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await diagnostics.get_history(db, vehicle_id, user, limit=limit)
    return {"success": True, "message": "Diagnostic history retrieved successfully", "data": history}
