"""Diagnostic scan history model."""

import re

from app.models.base import Base, TimestampMixin, utcnow
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates

DTC_PATTERN = re.compile(r"^[PBU][0-9A-F]{4}$", re.IGNORECASE)
SEVERITIES = ("low", "medium", "high", "critical")


class DiagnosticScan(Base, TimestampMixin):
    """One trouble-code scan of a vehicle.

    ``codes`` holds ``[{"code": str, "description": str, "severity": str}]``.
    """

    __tablename__ = "diagnostic_scans"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)

    scanned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    codes = Column(JSON, default=list, nullable=False)
    mileage = Column(Integer)
    equipment = Column(String(100))
    technician = Column(String(100))
    resolved = Column(Boolean, default=False, nullable=False)
    notes = Column(Text)

    vehicle = relationship("Vehicle", back_populates="diagnostic_history")

    @validates("codes")
    def validate_codes(self, key, value):
        for entry in value or []:
            if not DTC_PATTERN.match(entry.get("code", "")):
                raise ValueError(f"Invalid diagnostic code format: {entry.get('code')}")
            if entry.get("severity", "medium") not in SEVERITIES:
                raise ValueError(f"Invalid severity: {entry.get('severity')}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.scanned_at.isoformat() if self.scanned_at else None,
            "codes": self.codes,
            "mileage": self.mileage,
            "equipment": self.equipment,
            "technician": self.technician,
            "resolved": self.resolved,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<DiagnosticScan(id={self.id}, vehicle_id={self.vehicle_id}, codes={len(self.codes or [])})>"
