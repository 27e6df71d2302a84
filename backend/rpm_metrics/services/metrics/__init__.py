"""Clinical metrics ETL: telemetry reads, classification and persistence."""

from rpm_metrics.services.metrics.cohorts import (
    CohortProvider,
    InMemoryCohortProvider,
    SQLCohortProvider,
)
from rpm_metrics.services.metrics.etl import ClinicalMetricsEtl, MetricsRunStats
from rpm_metrics.services.metrics.exceptions import (
    CohortLookupError,
    MetricsEtlError,
    SchemaInitializationError,
)
from rpm_metrics.services.metrics.readings import AlertCounts, DeviceReading
from rpm_metrics.services.metrics.repository import ClinicalMetricsRepository
from rpm_metrics.services.metrics.telemetry import TelemetryReader
from rpm_metrics.services.metrics.thresholds import DeviceType, EnrollmentPeriod

__all__ = [
    "AlertCounts",
    "ClinicalMetricsEtl",
    "ClinicalMetricsRepository",
    "CohortLookupError",
    "CohortProvider",
    "DeviceReading",
    "DeviceType",
    "EnrollmentPeriod",
    "InMemoryCohortProvider",
    "MetricsEtlError",
    "MetricsRunStats",
    "SQLCohortProvider",
    "SchemaInitializationError",
    "TelemetryReader",
]
