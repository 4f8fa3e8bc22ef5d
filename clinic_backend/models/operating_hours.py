"""Clinic operating hours model definitions."""

from sqlalchemy import Boolean, Column, Integer, String, UniqueConstraint
from clinic_backend.database import Base


class OperatingHours(Base):
    """Opening and closing time of a clinic for one weekday."""
    __tablename__ = "operating_hours"
    __table_args__ = (UniqueConstraint("clinic_id", "weekday", name="uq_operating_hours_clinic_weekday"),)

    id = Column(Integer, primary_key=True)
    clinic_id = Column(Integer, nullable=False, index=True)
    weekday = Column(String(9), nullable=False)  # monday..sunday
    open_time = Column(String(5))
    close_time = Column(String(5))
    is_closed = Column(Boolean, default=False, nullable=False)
