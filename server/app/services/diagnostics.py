"""
Simulated OBD diagnostic scans and reports.

No hardware is involved: ``simulate_scan`` draws plausible trouble codes with a
probability that grows with vehicle age and mileage. Pass a seeded
``random.Random`` for reproducible results.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.errors import AuthorizationError, NotFoundError
from app.models.diagnostic_scan import DiagnosticScan
from app.models.user import User
from app.models.vehicle import Vehicle
from app.services.chat_completer import ChatCompleter
from app.services.diagnostic_explainer import explain_code
from app.services.notifications import NotificationHub, user_topic
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_EQUIPMENT = "Autel MaxiSys Ultra"

DIAGNOSTIC_CODES = {
    "P0300": {"system": "Engine", "category": "Ignition", "description": "Random/Multiple Cylinder Misfire Detected"},
    "P0171": {"system": "Fuel/Air", "category": "Fuel System", "description": "System Too Lean (Bank 1)"},
    "P0420": {
        "system": "Emission",
        "category": "Catalytic Converter",
        "description": "Catalyst System Efficiency Below Threshold",
    },
    "P0455": {
        "system": "Emission",
        "category": "EVAP",
        "description": "Evaporative Emission Control System Leak Detected (Large Leak)",
    },
    "P0128": {
        "system": "Cooling",
        "category": "Thermostat",
        "description": "Coolant Thermostat (Coolant Temperature Below Thermostat Regulating Temperature)",
    },
    "P0101": {
        "system": "Air Intake",
        "category": "Mass Air Flow",
        "description": "Mass Air Flow Circuit Range/Performance Problem",
    },
    "P0505": {"system": "Idle Control", "category": "IAC", "description": "Idle Control System Malfunction"},
    "P0717": {
        "system": "Transmission",
        "category": "Speed Sensor",
        "description": "Input/Turbine Speed Sensor Circuit No Signal",
    },
    "B1318": {"system": "Body", "category": "Airbag", "description": "Battery Voltage Low"},
    "U0100": {"system": "Network", "category": "Communication", "description": "Lost Communication With ECM/PCM"},
}

ALWAYS_HIGH_CODES = {"P0300", "U0100", "B1318"}

SYSTEM_RECOMMENDATIONS = {
    "Engine": "Engine diagnostic and repair required",
    "Fuel/Air": "Fuel system inspection and cleaning recommended",
    "Emission": "Emission system service required for compliance",
    "Transmission": "Transmission service and inspection needed",
}

# code prefix -> (min, max) repair estimate in CAD
REPAIR_COST_BY_PREFIX = {"P": (200, 800), "B": (100, 400), "U": (300, 1200)}
DEFAULT_REPAIR_COST = (150, 600)
BASE_DIAGNOSTIC_FEE = (150, 200)

SEVERITY_ORDER = ("critical", "high", "medium", "low")


# ============================================================================
# Simulation
# ============================================================================


def code_probability(age: int, mileage: int) -> float:
    probability = 0.1
    if age > 10:
        probability += 0.2
    if mileage > 100_000:
        probability += 0.3
    if mileage > 200_000:
        probability += 0.2
    return probability


def calculate_severity(code: str, age: int, mileage: int) -> str:
    if code in ALWAYS_HIGH_CODES:
        return "high"
    if code.startswith("P04") or code.startswith("P05"):
        return "medium"
    if age > 15 or mileage > 250_000:
        return "high"
    if age > 10 or mileage > 150_000:
        return "medium"
    return "low"


def simulate_scan(vehicle, rng: Optional[random.Random] = None) -> List[Dict[str, str]]:
    """Zero to three distinct codes with severities for ``vehicle``."""
    rng = rng or random.Random()
    age = vehicle.age()
    mileage = vehicle.mileage or 0

    if rng.random() >= code_probability(age, mileage):
        return []

    picked = rng.sample(list(DIAGNOSTIC_CODES), rng.randint(1, 3))
    return [
        {
            "code": code,
            "description": DIAGNOSTIC_CODES[code]["description"],
            "severity": calculate_severity(code, age, mileage),
        }
        for code in picked
    ]


# ============================================================================
# Report helpers
# ============================================================================


def summarize_codes(codes: List[Dict[str, Any]]) -> str:
    if not codes:
        return "No diagnostic trouble codes detected. Vehicle systems are operating normally."

    def count(severity):
        return sum(1 for c in codes if c.get("severity") == severity)

    def plural(n):
        return "s" if n > 1 else ""

    parts = [f"Diagnostic scan detected {len(codes)} trouble code{plural(len(codes))}."]
    critical, high, medium, low = (count(s) for s in SEVERITY_ORDER)
    if critical:
        parts.append(f"{critical} critical issue{plural(critical)} requiring immediate attention.")
    if high:
        parts.append(f"{high} high priority issue{plural(high)} should be addressed soon.")
    if medium:
        parts.append(f"{medium} medium priority issue{plural(medium)} for monitoring.")
    if low:
        parts.append(f"{low} low priority issue{plural(low)} for future consideration.")
    return " ".join(parts)


def recommendations_for_codes(codes: List[Dict[str, Any]]) -> List[str]:
    if not codes:
        return [
            "Continue regular maintenance schedule",
            "Schedule next service according to manufacturer recommendations",
        ]

    systems = []
    for c in codes:
        system = DIAGNOSTIC_CODES.get(c["code"], {}).get("system")
        if system and system not in systems:
            systems.append(system)

    recommendations = [
        SYSTEM_RECOMMENDATIONS.get(system, f"{system} system requires professional attention") for system in systems
    ]
    if any(c.get("severity") in ("high", "critical") for c in codes):
        recommendations.append("Schedule appointment immediately to prevent further damage")
    else:
        recommendations.append("Schedule service appointment within 1-2 weeks")
    return recommendations


def estimate_costs(codes: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not codes:
        return {"min": 0, "max": 0, "currency": "CAD"}

    low, high = BASE_DIAGNOSTIC_FEE
    for c in codes:
        add_low, add_high = REPAIR_COST_BY_PREFIX.get(c["code"][:1].upper(), DEFAULT_REPAIR_COST)
        low += add_low
        high += add_high
    return {"min": low, "max": high, "currency": "CAD"}


def overall_urgency(codes: List[Dict[str, Any]]) -> str:
    severities = {c.get("severity") for c in codes}
    for level in SEVERITY_ORDER[:-1]:
        if level in severities:
            return level
    return "low"


def _vehicle_summary(vehicle: Vehicle) -> Dict[str, Any]:
    return {
        "id": vehicle.id,
        "displayName": vehicle.display_name,
        "vin": vehicle.vin,
        "mileage": vehicle.mileage,
    }


# ============================================================================
# Operations
# ============================================================================


async def get_vehicle(db: AsyncSession, vehicle_id: int, actor: Optional[User] = None) -> Vehicle:
    """Load a vehicle; customers may only load their own."""
    vehicle = await db.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    if actor is not None and not actor.is_staff and vehicle.owner_id != actor.id:
        raise AuthorizationError("Access denied to this vehicle")
    return vehicle


async def run_scan(
    db: AsyncSession,
    vehicle_id: int,
    actor: User,
    equipment: Optional[str] = None,
    technician: Optional[str] = None,
    completer: Optional[ChatCompleter] = None,
    hub: Optional[NotificationHub] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Simulate a scan, append it to the vehicle's diagnostic history and explain each code."""
    vehicle = await get_vehicle(db, vehicle_id)
    equipment = equipment or DEFAULT_EQUIPMENT
    technician = technician or actor.full_name

    codes = simulate_scan(vehicle, rng)
    explanations = await asyncio.gather(*(explain_code(c["code"], vehicle, completer) for c in codes))

    scan = DiagnosticScan(
        scanned_at=datetime.now(timezone.utc),
        codes=codes,
        mileage=vehicle.mileage,
        equipment=equipment,
        technician=technician,
        resolved=False,
        notes=f"Diagnostic scan completed with {len(codes)} codes detected",
    )
    vehicle.diagnostic_history.append(scan)
    await db.commit()
    logger.info(f"Diagnostic scan for vehicle {vehicle.id}: {len(codes)} codes")

    session = {
        "scanId": scan.id,
        "vehicleId": vehicle.id,
        "equipment": equipment,
        "technician": technician,
        "codes": [{**c, "explanation": e.to_api()} for c, e in zip(codes, explanations)],
        "scanDate": scan.scanned_at.isoformat(),
        "mileage": vehicle.mileage,
    }

    if hub is not None:
        hub.publish(
            user_topic(vehicle.owner_id),
            "diagnostic_completed",
            {"vehicleId": vehicle.id, "codesCount": len(codes), "diagnosticSession": session},
        )

    return {"diagnosticSession": session, "vehicle": _vehicle_summary(vehicle)}


async def build_report(
    db: AsyncSession,
    vehicle_id: int,
    actor: User,
    include_history: bool = False,
) -> Dict[str, Any]:
    """Report on the vehicle's most recent scan."""
    vehicle = await get_vehicle(db, vehicle_id)
    if not vehicle.diagnostic_history:
        raise NotFoundError("No diagnostic history found for this vehicle")

    latest = vehicle.diagnostic_history[-1]
    codes = latest.codes or []
    return {
        "vehicleInfo": _vehicle_summary(vehicle),
        "diagnosticDate": latest.scanned_at.isoformat(),
        "equipment": latest.equipment,
        "technician": latest.technician,
        "codes": codes,
        "summary": summarize_codes(codes),
        "recommendations": recommendations_for_codes(codes),
        "estimatedCosts": estimate_costs(codes),
        "urgencyLevel": overall_urgency(codes),
        "history": [s.to_dict() for s in vehicle.diagnostic_history] if include_history else None,
        "generatedBy": actor.full_name,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "reportId": f"DR-{int(time.time() * 1000)}-{vehicle.vin[-6:]}",
    }


async def get_history(db: AsyncSession, vehicle_id: int, actor: User, limit: int = 10) -> Dict[str, Any]:
    """Diagnostic history, newest first."""
    vehicle = await get_vehicle(db, vehicle_id, actor)
    history = sorted(vehicle.diagnostic_history, key=lambda s: s.id, reverse=True)
    return {
        "vehicleId": vehicle.id,
        "vehicleInfo": {"displayName": vehicle.display_name, "vin": vehicle.vin},
        "history": [s.to_dict() for s in history[: max(limit, 1)]],
    }
