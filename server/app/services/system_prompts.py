"""
System prompt templates for the customer chat assistant.

The preamble carries the shop's identity and contact details, its hours and
live open/closed status, the service price menu, behaviour guidelines and
whatever customer, vehicle and appointment context the current session holds.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from app.config import settings

# weekday() -> (open hour, close hour); Sunday closed
BUSINESS_HOURS = {
    0: (8, 18),
    1: (8, 18),
    2: (8, 18),
    3: (8, 18),
    4: (8, 18),
    5: (9, 16),
}

HOURS_TEXT = "Monday-Friday 8:00 AM - 6:00 PM, Saturday 9:00 AM - 4:00 PM, Closed Sunday"

SERVICE_MENU = [
    ("Oil changes and routine maintenance", "$80-120"),
    ("Brake service and repair", "$200-400"),
    ("Engine diagnostics and repair", "$150-200"),
    ("Transmission service", "$300-800"),
    ("Electrical system diagnostics", "$150-300"),
    ("Battery replacement", "$180-250"),
    ("Cooling system service", "$200-500"),
    ("Exhaust system repair", "$250-600"),
    ("Suspension and steering", "$300-1000"),
    ("Air conditioning service", "$200-500"),
    ("Pre-purchase inspections", "$100-150"),
    ("Emergency repairs", "varies"),
]

ROLE_AND_GUIDELINES = """YOUR ROLE AND CAPABILITIES:
- Help customers with inquiries about services, pricing, and scheduling
- Provide accurate information about repair processes and timeframes
- Assist with appointment booking, rescheduling, and cancellations
- Explain diagnostic codes and repair recommendations in simple terms
- Escalate complex technical issues or emergencies to human staff
- Maintain a professional, helpful, and knowledgeable tone
- Always prioritize safety and quality in recommendations

GUIDELINES:
- Be concise but informative (2-3 sentences preferred)
- Ask clarifying questions when needed to provide better assistance
- Provide realistic timeframes and pricing estimates
- Emphasize our expertise with European vehicles
- For appointments, check availability and confirm details
- For urgent issues, recommend immediate attention
- Always offer to connect with human staff for complex matters"""


def is_shop_open(now: Optional[datetime] = None) -> bool:
    """Whether the shop is open at ``now`` (evaluated in the shop time zone)."""
    tz = ZoneInfo(settings.SHOP_TIMEZONE)
    now = now.astimezone(tz) if now and now.tzinfo else (now or datetime.now(tz))
    hours = BUSINESS_HOURS.get(now.weekday())
    if hours is None:
        return False
    opens, closes = hours
    return opens <= now.hour < closes


def format_context(context: Optional[Dict[str, Any]]) -> str:
    """Render the session context bag as labelled lines."""
    if not context:
        return ""

    lines = []
    customer = context.get("customer_info")
    if customer:
        lines.append(
            f"Customer: {customer.get('first_name')} {customer.get('last_name')} ({customer.get('email')})"
        )

    vehicle = context.get("vehicle_info")
    if vehicle:
        lines.append(
            f"Vehicle: {vehicle.get('year')} {vehicle.get('make')} {vehicle.get('model')} "
            f"(VIN: {vehicle.get('vin')})"
        )

    appointment = context.get("appointment_info")
    if appointment:
        line = f"Appointment: {appointment.get('status')} for {appointment.get('appointment_date')}"
        if appointment.get("appointment_time"):
            line += f" at {appointment['appointment_time']}"
        lines.append(line)

    return "\n".join(lines)


def build_system_prompt(context: Optional[Dict[str, Any]] = None, now: Optional[datetime] = None) -> str:
    """
    Build the system preamble for one chat turn.

    Args:
        context: Session context with optional ``customer_info``,
            ``vehicle_info`` and ``appointment_info`` entries
        now: Clock used for the OPEN/CLOSED status (default: current time)

    Returns:
        Complete system prompt string
    """
    menu = "\n".join(f"- {name} ({price})" for name, price in SERVICE_MENU)
    status = "OPEN" if is_shop_open(now) else "CLOSED"

    return f"""You are an AI assistant for {settings.SHOP_NAME}, a professional European auto repair shop specializing in BMW, Mercedes-Benz, Audi, Volkswagen, and Porsche vehicles.

SHOP INFORMATION:
- Name: {settings.SHOP_NAME}
- Address: {settings.SHOP_ADDRESS}
- Phone: {settings.SHOP_PHONE}
- Email: {settings.SHOP_EMAIL}
- Website: {settings.SHOP_WEBSITE}
- Hours: {HOURS_TEXT}
- Current Status: {status}
- Specialization: European vehicles (20+ years experience)

SERVICES WE OFFER:
{menu}

{ROLE_AND_GUIDELINES}

CONTEXT INFORMATION:
{format_context(context)}

Remember: You represent {settings.SHOP_NAME}'s commitment to quality European auto repair. Be helpful, professional, and accurate in all responses."""


def build_diagnostic_prompt(code: str, vehicle_description: str) -> str:
    return f"""Explain diagnostic trouble code {code} for {vehicle_description}.
Provide a comprehensive but customer-friendly explanation including:
1. Clear title and description of what the code means
2. Symptoms the customer might notice
3. Most common causes
4. Urgency level (low/medium/high/critical)
5. Estimated repair cost range in CAD
6. Category/system affected
7. Immediate recommendations

Format as JSON with fields: title, description, symptoms[], causes[], urgency, estimatedCost, category, recommendations[]"""


def build_recommendation_prompt(vehicle: Dict[str, Any], symptoms) -> str:
    return f"""Based on this vehicle information and symptoms, recommend appropriate services:
Vehicle: {vehicle.get('year')} {vehicle.get('make')} {vehicle.get('model')}
Mileage: {vehicle.get('mileage') or 'Unknown'}
Last Service: {vehicle.get('last_service_date') or 'Unknown'}
Symptoms: {', '.join(symptoms) or 'None specified'}

Provide 3-5 specific service recommendations with brief explanations."""
