"""Service history model."""

from app.models.base import Base, TimestampMixin
from sqlalchemy import JSON, Column, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship


class ServiceHistory(Base, TimestampMixin):
    """Completed work performed on a vehicle.

    Rows are appended when an appointment reaches ``completed`` and are
    never edited afterwards.
    """

    __tablename__ = "service_history"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True)

    # Service Performed
    service_date = Column(Date, nullable=False, index=True)
    mileage = Column(Integer)
    services_performed = Column(JSON, default=list)  # list of service names
    notes = Column(Text)
    cost = Column(Numeric(10, 2))
    technician = Column(String(100))

    # Relationships
    vehicle = relationship("Vehicle", back_populates="service_history")

    def __repr__(self):
        return (
            f"<ServiceHistory(id={self.id}, vehicle_id={self.vehicle_id}, "
            f"service_date='{self.service_date}')>"
        )
