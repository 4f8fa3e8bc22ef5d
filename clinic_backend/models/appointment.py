"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, String, text
from clinic_backend.database import Base
from clinic_backend.scheduling import lifecycle


FREED_SLOT_STATUS_SQL = "status NOT IN ('cancelled', 'no-show')"


class Appointment(Base):
    """Represents a booked appointment with a practitioner."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_practitioner_day", "practitioner_id", "date", "status"),
        Index("idx_appointments_clinic_day", "clinic_id", "date", "status"),
        # Double-booking backstop for identical start times; freed statuses may repeat.
        Index(
            "uq_appointments_practitioner_slot",
            "practitioner_id",
            "date",
            "time_slot",
            unique=True,
            postgresql_where=text(FREED_SLOT_STATUS_SQL),
            sqlite_where=text(FREED_SLOT_STATUS_SQL),
        ),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, nullable=True)  # unassigned until auto-assignment
    clinic_id = Column(Integer, nullable=False)
    patient_id = Column(Integer, nullable=False)
    service_type = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")
    notes = Column(String(1000))
    emergency = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    @property
    def can_be_cancelled(self) -> bool:
        return lifecycle.can_be_cancelled(self)

    @property
    def can_be_rescheduled(self) -> bool:
        return lifecycle.can_be_rescheduled(self)
