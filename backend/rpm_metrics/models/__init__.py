from rpm_metrics.models.base import Base, TimestampMixin, model_to_dict
from rpm_metrics.models.clinical_metrics import (
    ClinicalMetricsPatientDetail,
    ClinicalMetricsSummary,
    summary_metric_columns,
)
from rpm_metrics.models.telemetry import DeviceDataTransmission, PatientEnrollmentPeriod

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "model_to_dict",
    # Output tables
    "ClinicalMetricsSummary",
    "ClinicalMetricsPatientDetail",
    "summary_metric_columns",
    # External tables
    "DeviceDataTransmission",
    "PatientEnrollmentPeriod",
]
