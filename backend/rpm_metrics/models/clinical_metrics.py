"""Clinical metrics output tables: per-cohort summaries and per-patient evidence.

Every classification bucket is stored as a ``<bucket>_count``,
``<bucket>_percent`` and ``<bucket>_patients`` column triple on the summary row.
"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rpm_metrics.models.base import Base, TimestampMixin


def _count():
    return mapped_column(Integer, default=0, server_default="0", nullable=False)


def _big_count():
    return mapped_column(BigInteger, default=0, server_default="0", nullable=False)


def _decimal():
    return mapped_column(Float, default=0.0, server_default="0", nullable=False)


class ClinicalMetricsSummary(Base, TimestampMixin):
    """One wide aggregate row per (practice, enrollment period)."""

    __tablename__ = "clinical_metrics_summary"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    summary_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    practice_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    enrollment_period: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    total_patients: Mapped[int] = _count()

    # Blood pressure
    bp_total_readings: Mapped[int] = _count()
    bp_patients_count: Mapped[int] = _count()
    bp_avg_sys: Mapped[float] = _decimal()
    bp_avg_dia: Mapped[float] = _decimal()
    bp_avg_hr: Mapped[float] = _decimal()
    bp_normal_avg_sys: Mapped[float] = _decimal()
    bp_normal_avg_dia: Mapped[float] = _decimal()
    bp_normal_avg_hr: Mapped[float] = _decimal()
    bp_normal_count: Mapped[int] = _count()
    bp_normal_percent: Mapped[float] = _decimal()
    bp_normal_patients: Mapped[int] = _count()
    bp_abnormal_count: Mapped[int] = _count()
    bp_abnormal_percent: Mapped[float] = _decimal()
    bp_abnormal_patients: Mapped[int] = _count()
    bp_arrhythmia_count: Mapped[int] = _count()
    bp_arrhythmia_percent: Mapped[float] = _decimal()
    bp_arrhythmia_patients: Mapped[int] = _count()
    bp_sys_gt_130_dia_gt_80_count: Mapped[int] = _count()
    bp_sys_gt_130_dia_gt_80_percent: Mapped[float] = _decimal()
    bp_sys_gt_130_dia_gt_80_patients: Mapped[int] = _count()
    bp_sys_gt_140_dia_gt_80_count: Mapped[int] = _count()
    bp_sys_gt_140_dia_gt_80_percent: Mapped[float] = _decimal()
    bp_sys_gt_140_dia_gt_80_patients: Mapped[int] = _count()
    bp_sys_gt_150_dia_gt_80_count: Mapped[int] = _count()
    bp_sys_gt_150_dia_gt_80_percent: Mapped[float] = _decimal()
    bp_sys_gt_150_dia_gt_80_patients: Mapped[int] = _count()
    bp_sys_gt_160_dia_gt_80_count: Mapped[int] = _count()
    bp_sys_gt_160_dia_gt_80_percent: Mapped[float] = _decimal()
    bp_sys_gt_160_dia_gt_80_patients: Mapped[int] = _count()
    bp_sys_lt_90_dia_lt_60_count: Mapped[int] = _count()
    bp_sys_lt_90_dia_lt_60_percent: Mapped[float] = _decimal()
    bp_sys_lt_90_dia_lt_60_patients: Mapped[int] = _count()
    bp_hr_abnormal_count: Mapped[int] = _count()
    bp_hr_abnormal_percent: Mapped[float] = _decimal()
    bp_hr_abnormal_patients: Mapped[int] = _count()

    # Pulse oximetry
    spo2_total_readings: Mapped[int] = _count()
    spo2_patients_count: Mapped[int] = _count()
    spo2_90_92_count: Mapped[int] = _count()
    spo2_90_92_percent: Mapped[float] = _decimal()
    spo2_90_92_patients: Mapped[int] = _count()
    spo2_88_89_count: Mapped[int] = _count()
    spo2_88_89_percent: Mapped[float] = _decimal()
    spo2_88_89_patients: Mapped[int] = _count()
    spo2_below_88_count: Mapped[int] = _count()
    spo2_below_88_percent: Mapped[float] = _decimal()
    spo2_below_88_patients: Mapped[int] = _count()

    # Weight
    weight_total_readings: Mapped[int] = _count()
    weight_patients_count: Mapped[int] = _count()
    weight_gain_4pct_count: Mapped[int] = _count()
    weight_gain_4pct_percent: Mapped[float] = _decimal()
    weight_gain_4pct_patients: Mapped[int] = _count()

    # Glucose - fasting
    glucose_fasting_total: Mapped[int] = _count()
    glucose_fasting_patients_count: Mapped[int] = _count()
    glucose_fasting_above_130_count: Mapped[int] = _count()
    glucose_fasting_above_130_percent: Mapped[float] = _decimal()
    glucose_fasting_above_130_patients: Mapped[int] = _count()
    glucose_fasting_above_160_count: Mapped[int] = _count()
    glucose_fasting_above_160_percent: Mapped[float] = _decimal()
    glucose_fasting_above_160_patients: Mapped[int] = _count()
    glucose_fasting_above_180_count: Mapped[int] = _count()
    glucose_fasting_above_180_percent: Mapped[float] = _decimal()
    glucose_fasting_above_180_patients: Mapped[int] = _count()
    glucose_fasting_below_70_count: Mapped[int] = _count()
    glucose_fasting_below_70_percent: Mapped[float] = _decimal()
    glucose_fasting_below_70_patients: Mapped[int] = _count()
    glucose_fasting_below_54_count: Mapped[int] = _count()
    glucose_fasting_below_54_percent: Mapped[float] = _decimal()
    glucose_fasting_below_54_patients: Mapped[int] = _count()

    # Glucose - post meal
    glucose_postmeal_total: Mapped[int] = _count()
    glucose_postmeal_patients_count: Mapped[int] = _count()
    glucose_postmeal_above_180_count: Mapped[int] = _count()
    glucose_postmeal_above_180_percent: Mapped[float] = _decimal()
    glucose_postmeal_above_180_patients: Mapped[int] = _count()
    glucose_postmeal_above_200_count: Mapped[int] = _count()
    glucose_postmeal_above_200_percent: Mapped[float] = _decimal()
    glucose_postmeal_above_200_patients: Mapped[int] = _count()

    # Glucose - random
    glucose_random_total: Mapped[int] = _count()
    glucose_random_patients_count: Mapped[int] = _count()
    glucose_random_above_200_count: Mapped[int] = _count()
    glucose_random_above_200_percent: Mapped[float] = _decimal()
    glucose_random_above_200_patients: Mapped[int] = _count()
    glucose_random_below_70_count: Mapped[int] = _count()
    glucose_random_below_70_percent: Mapped[float] = _decimal()
    glucose_random_below_70_patients: Mapped[int] = _count()

    # Alerts (all device types)
    alert_total_readings: Mapped[int] = _big_count()
    critical_alerts_count: Mapped[int] = _big_count()
    critical_alerts_percent: Mapped[float] = _decimal()
    critical_alerts_patients: Mapped[int] = _count()
    out_of_range_alerts_count: Mapped[int] = _big_count()
    out_of_range_alerts_percent: Mapped[float] = _decimal()
    out_of_range_alerts_patients: Mapped[int] = _count()
    escalations_count: Mapped[int] = _big_count()
    escalations_percent: Mapped[float] = _decimal()
    escalations_patients: Mapped[int] = _count()
    total_alerts_count: Mapped[int] = _big_count()
    total_alerts_percent: Mapped[float] = _decimal()
    total_alerts_patients: Mapped[int] = _count()

    __table_args__ = (
        UniqueConstraint(
            "practice_id",
            "enrollment_period",
            "summary_date",
            name="uq_clinical_metrics_practice_period_date",
        ),
        Index(
            "ix_clinical_metrics_practice_period",
            "practice_id",
            "enrollment_period",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ClinicalMetricsSummary(id={self.id}, practice='{self.practice_id}', "
            f"period='{self.enrollment_period}')>"
        )


_SUMMARY_KEY_COLUMNS = {
    "id",
    "summary_date",
    "practice_id",
    "enrollment_period",
    "created_at",
    "updated_at",
}


def summary_metric_columns() -> list[str]:
    """Names of every metric column on the summary table, in declaration order."""
    return [
        column.key
        for column in ClinicalMetricsSummary.__table__.columns
        if column.key not in _SUMMARY_KEY_COLUMNS
    ]


class ClinicalMetricsPatientDetail(Base, TimestampMixin):
    """Drill-down evidence: one reading that contributed to one summary bucket."""

    __tablename__ = "clinical_metrics_patient_details"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinical_metrics_summary_id: Mapped[int] = mapped_column(
        ForeignKey("clinical_metrics_summary.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    patient_sub: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    metric_name: Mapped[str] = mapped_column(String(100), nullable=False)
    metric_value_detailed: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    reading_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "ix_clinical_metrics_details_summary_metric",
            "clinical_metrics_summary_id",
            "metric_name",
        ),
    )
