"""Service catalog model."""

import enum
from decimal import ROUND_HALF_UP, Decimal

from app.models.base import Base, TimestampMixin
from sqlalchemy import JSON, Boolean, Column, Integer, Numeric, String, Text
from sqlalchemy.orm import validates

CENT = Decimal("0.01")


class ServiceCategory(str, enum.Enum):
    """Service category enum."""

    OIL_CHANGE = "oil-change"
    BRAKE_SERVICE = "brake-service"
    ENGINE_DIAGNOSTICS = "engine-diagnostics"
    TRANSMISSION = "transmission"
    ELECTRICAL = "electrical"
    COOLING_SYSTEM = "cooling-system"
    EXHAUST = "exhaust"
    SUSPENSION = "suspension"
    TIRES_WHEELS = "tires-wheels"
    AIR_CONDITIONING = "air-conditioning"
    BATTERY = "battery"
    PREVENTIVE_MAINTENANCE = "preventive-maintenance"
    EMERGENCY_REPAIR = "emergency-repair"


def to_decimal(value) -> Decimal:
    """Convert JSON numbers to Decimal without float artefacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Service(Base, TimestampMixin):
    """Catalog entry for a bookable service.

    ``parts`` holds ``[{"name", "partNumber", "isRequired", "estimatedCost"}]``
    and ``price_modifiers`` holds ``[{"condition", "multiplier", "additionalCost"}]``.
    """

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False)

    # Pricing
    base_price = Column(Numeric(10, 2), nullable=False)
    estimated_duration = Column(Integer, nullable=False)  # minutes
    labor_rate = Column(Numeric(10, 2), default=Decimal("120"))
    parts = Column(JSON, default=list)
    price_modifiers = Column(JSON, default=list)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_popular = Column(Boolean, default=False, nullable=False)

    @validates("category")
    def validate_category(self, key, value):
        return ServiceCategory(value).value

    @validates("estimated_duration")
    def validate_duration(self, key, value):
        if value is None or value < 15:
            raise ValueError("Duration must be at least 15 minutes")
        return value

    @validates("base_price")
    def validate_base_price(self, key, value):
        if to_decimal(value) < 0:
            raise ValueError("Price cannot be negative")
        return value

    def calculate_total_cost(self, vehicle=None) -> Decimal:
        """Estimate the price of this service for ``vehicle``.

        Base price plus all part costs, then every modifier whose condition
        contains the vehicle make (case-insensitive) is applied in list
        order: multiply first, then add. Modifiers compound.
        """
        total = to_decimal(self.base_price)
        total += sum((to_decimal(p.get("estimatedCost")) for p in self.parts or []), Decimal("0"))

        make = getattr(vehicle, "make", None)
        if make:
            make = make.lower()
            for modifier in self.price_modifiers or []:
                if make not in modifier.get("condition", "").lower():
                    continue
                if modifier.get("multiplier"):
                    total *= to_decimal(modifier["multiplier"])
                if modifier.get("additionalCost"):
                    total += to_decimal(modifier["additionalCost"])

        return total.quantize(CENT, rounding=ROUND_HALF_UP)

    def __repr__(self):
        return f"<Service(id={self.id}, name='{self.name}', base_price={self.base_price})>"
