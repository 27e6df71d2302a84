"""Externally owned tables read by the ETL: device telemetry and enrollment periods.

These mappings are read-only from the ETL's point of view. The gateway that
receives device transmissions and the enrollment-period tracker own their
schemas; they are mapped here so queries can be expressed with SQLAlchemy.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rpm_metrics.models.base import Base, TimestampMixin


class DeviceDataTransmission(Base):
    """Raw biometric reading transmitted by a patient device."""

    __tablename__ = "device_data_transmission"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_sub: Mapped[str] = mapped_column(String(200), nullable=False)
    device_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="' BPM'| ' Oxymeter'| ' Weight'| ' Blood Glucose'",
    )
    detailed_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    manual_entry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    entry_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    critical_alert: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    out_of_range_alert: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ext_alert: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Escalated to an external care team",
    )

    __table_args__ = (
        Index("ix_device_data_patient_device_ts", "patient_sub", "device_name", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<DeviceDataTransmission(id={self.id}, device='{self.device_name}')>"


class PatientEnrollmentPeriod(Base, TimestampMixin):
    """Enrollment-period bucket assigned to a patient by the enrollment tracker."""

    __tablename__ = "patient_enrollment_periods"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_sub: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    reporting_provider: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    practice_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    enrollment_period: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    enrollment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    primary_insurance_type: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    secondary_insurance_type: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
