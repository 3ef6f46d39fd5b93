"""
Customer-friendly explanations of trouble codes and service recommendations.

Both helpers ask the language model first when one is configured and fall
back to built-in tables when it is not, or when the call fails.
"""

import json
import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Literal, Optional

from app.errors import ValidationError
from app.models.diagnostic_scan import DTC_PATTERN
from app.services.chat_completer import ChatCompleter
from app.services.chat_pipeline import vehicle_snapshot
from app.services.system_prompts import build_diagnostic_prompt, build_recommendation_prompt
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

LUXURY_MAKES = ("bmw", "mercedes-benz", "audi", "porsche")
EUROPEAN_SCAN_MAKES = ("bmw", "mercedes-benz", "audi")
COST_RANGE_PATTERN = re.compile(r"\$?\s*(\d{1,3}(?:,\d{3})+|\d+)\s*-\s*\$?\s*(\d{1,3}(?:,\d{3})+|\d+)")
MAX_RECOMMENDATIONS = 5


class DiagnosticExplanation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str
    description: str
    symptoms: List[str] = []
    causes: List[str] = []
    urgency: Literal["low", "medium", "high", "critical"] = "medium"
    estimated_cost: str
    category: str
    recommendations: List[str] = []

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


KNOWN_EXPLANATIONS = {
    "P0300": dict(
        title="Random/Multiple Cylinder Misfire Detected",
        description=(
            "Your engine is misfiring, meaning one or more cylinders are not firing properly. "
            "This affects engine performance and can cause damage if not addressed."
        ),
        symptoms=[
            "Rough idle or engine shaking",
            "Loss of power during acceleration",
            "Poor fuel economy",
            "Engine hesitation",
            "Check engine light",
        ],
        causes=[
            "Worn spark plugs or ignition coils",
            "Fuel system problems",
            "Vacuum leaks",
            "Carbon buildup",
            "Compression issues",
        ],
        urgency="high",
        estimated_cost="$300-1200",
        category="Engine/Ignition System",
        recommendations=[
            "Stop driving if severely misfiring",
            "Schedule diagnostic immediately",
            "Check for pending codes",
        ],
    ),
    "P0171": dict(
        title="System Too Lean (Bank 1)",
        description=(
            "Your engine is running lean, meaning there's too much air or not enough fuel "
            "in the combustion mixture."
        ),
        symptoms=["Poor acceleration", "Rough idle", "Engine hesitation", "Check engine light", "Possible stalling"],
        causes=[
            "Vacuum leak in intake system",
            "Faulty oxygen sensor",
            "Dirty or failing mass airflow sensor",
            "Fuel pump issues",
            "Clogged fuel injectors",
        ],
        urgency="medium",
        estimated_cost="$200-800",
        category="Fuel/Air System",
        recommendations=["Monitor fuel economy", "Schedule diagnostic within a week", "Check for vacuum leaks"],
    ),
    "P0420": dict(
        title="Catalyst System Efficiency Below Threshold (Bank 1)",
        description=(
            "Your catalytic converter is not working efficiently, which affects emissions "
            "and can lead to failed emissions tests."
        ),
        symptoms=["Check engine light", "Reduced fuel economy", "Possible sulfur smell", "Failed emissions test"],
        causes=[
            "Worn catalytic converter",
            "Faulty oxygen sensors",
            "Engine misfires damaging catalyst",
            "Contaminated catalyst",
        ],
        urgency="medium",
        estimated_cost="$800-2500",
        category="Emission Control System",
        recommendations=["Schedule diagnostic soon", "May affect emissions test", "Address any engine misfires first"],
    ),
    "P0455": dict(
        title="Evaporative Emission Control System Leak Detected (Large Leak)",
        description="There's a large leak in your vehicle's evaporative emission system, which captures fuel vapors.",
        symptoms=["Check engine light", "Fuel smell", "Possible fuel economy decrease"],
        causes=["Loose or damaged gas cap", "Cracked EVAP lines", "Faulty purge valve", "Damaged fuel tank"],
        urgency="low",
        estimated_cost="$50-400",
        category="Emission Control System",
        recommendations=["Check gas cap first", "Safe to drive", "Schedule service when convenient"],
    ),
}


def generic_explanation(code: str) -> DiagnosticExplanation:
    return DiagnosticExplanation(
        title=f"Diagnostic Code {code}",
        description=(
            "A diagnostic trouble code has been detected in your vehicle's system. "
            "Professional diagnosis is recommended to determine the exact cause."
        ),
        symptoms=["Check engine light", "Possible performance issues", "Various symptoms possible"],
        causes=["Multiple potential causes", "Requires diagnostic scan"],
        urgency="medium",
        estimated_cost="$150-600",
        category="Vehicle System",
        recommendations=["Schedule diagnostic appointment", "Professional scan needed"],
    )


def lookup_explanation(code: str) -> DiagnosticExplanation:
    known = KNOWN_EXPLANATIONS.get(code)
    return DiagnosticExplanation(**known) if known else generic_explanation(code)


def parse_text_explanation(text: str, code: str) -> DiagnosticExplanation:
    """Best-effort structure for a model reply that is not valid JSON."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return DiagnosticExplanation(
        title=lines[0] if lines else f"Diagnostic Code {code}",
        description=lines[1] if len(lines) > 1 else "A diagnostic trouble code has been detected.",
        symptoms=[line for line in lines if "symptom" in line.lower()][:3],
        causes=[line for line in lines if "cause" in line.lower()][:3],
        urgency="medium",
        estimated_cost="$200-600",
        category="Engine/Emission",
        recommendations=["Professional diagnostic scan", "Repair as needed"],
    )


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text


def is_luxury_make(make: Optional[str]) -> bool:
    return bool(make) and make.strip().lower() in LUXURY_MAKES


def _amount(text: str) -> Decimal:
    return Decimal(text.replace(",", ""))


def scale_cost_range(cost: str) -> str:
    """``$min-max`` -> ``$round(min*1.3)-round(max*1.5)``, keeping any text around the range."""
    match = COST_RANGE_PATTERN.search(cost or "")
    if not match:
        return cost
    low = (_amount(match.group(1)) * Decimal("1.3")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    high = (_amount(match.group(2)) * Decimal("1.5")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{cost[:match.start()]}${low}-{high}{cost[match.end():]}"


def normalize_code(code: str) -> str:
    code = (code or "").strip()
    if not DTC_PATTERN.match(code):
        raise ValidationError("Invalid diagnostic code format")
    return code.upper()


async def explain_code(code: str, vehicle=None, completer: Optional[ChatCompleter] = None) -> DiagnosticExplanation:
    """
    Explain a trouble code for ``vehicle`` (optional).

    Args:
        code: Trouble code, ``[PBU][0-9A-F]{4}`` in any case
        vehicle: Vehicle model used for the prompt and luxury pricing
        completer: Language model; the lookup table is used when it is not configured

    Raises:
        ValidationError: Code does not match the trouble-code format
    """
    code = normalize_code(code)
    explanation = None

    if completer is not None and completer.configured:
        description = vehicle.display_name if vehicle is not None else "the vehicle"
        context = {"vehicle_info": vehicle_snapshot(vehicle).model_dump()} if vehicle is not None else {}
        try:
            reply = await completer.complete(
                [{"role": "user", "content": build_diagnostic_prompt(code, description)}], context
            )
        except Exception as e:
            logger.error(f"Error generating diagnostic explanation for {code}: {e}")
        else:
            try:
                explanation = DiagnosticExplanation.model_validate(json.loads(_strip_code_fence(reply)))
            except (json.JSONDecodeError, SchemaError, TypeError):
                logger.info(f"Explanation for {code} was not valid JSON, parsing as text")
                explanation = parse_text_explanation(reply, code)

    if explanation is None:
        explanation = lookup_explanation(code)

    if vehicle is not None and is_luxury_make(vehicle.make):
        explanation.estimated_cost = scale_cost_range(explanation.estimated_cost)

    return explanation


def _months_since(last_service: Optional[date], today: date) -> int:
    if last_service is None:
        return 12
    return (today - last_service).days // 30


def rule_based_recommendations(vehicle, symptoms: List[str], today: Optional[date] = None) -> List[str]:
    today = today or date.today()
    months = _months_since(vehicle.last_service_date, today)
    mileage = vehicle.mileage or 0
    lowered = [s.lower() for s in symptoms]

    recommendations = []
    if vehicle.last_service_date is None or months >= 6:
        recommendations.append("Oil and filter change - Essential for engine health")
    if mileage > 50000:
        recommendations.append("Brake inspection - Important safety check for higher mileage vehicles")
    if months >= 12:
        recommendations.append("Comprehensive vehicle inspection - Annual check-up recommended")
    if any("noise" in s for s in lowered):
        recommendations.append("Diagnostic inspection - Identify source of unusual noises")
    if any("vibration" in s for s in lowered):
        recommendations.append("Wheel balance and alignment check - Address vibration issues")
    if vehicle.make and vehicle.make.strip().lower() in EUROPEAN_SCAN_MAKES:
        recommendations.append("European vehicle diagnostic scan - Specialized check for your vehicle")

    return recommendations[:MAX_RECOMMENDATIONS]


async def recommend_services(
    vehicle,
    symptoms: Optional[List[str]] = None,
    completer: Optional[ChatCompleter] = None,
    today: Optional[date] = None,
) -> List[str]:
    """Up to five service recommendations for ``vehicle``."""
    symptoms = symptoms or []

    if completer is not None and completer.configured:
        details = {
            "year": vehicle.year,
            "make": vehicle.make,
            "model": vehicle.model,
            "mileage": vehicle.mileage,
            "last_service_date": vehicle.last_service_date.isoformat() if vehicle.last_service_date else None,
        }
        try:
            reply = await completer.complete(
                [{"role": "user", "content": build_recommendation_prompt(details, symptoms)}],
                {"vehicle_info": vehicle_snapshot(vehicle).model_dump()},
            )
            return [line.strip() for line in reply.splitlines() if line.strip()][:MAX_RECOMMENDATIONS]
        except Exception as e:
            logger.error(f"Error generating service recommendations: {e}")

    return rule_based_recommendations(vehicle, symptoms, today)
