"""Alert aggregation over counting queries plus flagged-reading evidence."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from rpm_metrics.services.metrics.classifiers.base import (
    BucketCollector,
    BucketStat,
    ClassificationResult,
    bucket_columns,
    cohort_readings,
)
from rpm_metrics.services.metrics.readings import AlertCounts, DeviceReading
from rpm_metrics.services.metrics.thresholds import INT64_MAX, percentage

logger = logging.getLogger("rpm_metrics.classifiers.alerts")

ALERT_BUCKETS = ("critical_alerts", "out_of_range_alerts", "escalations", "total_alerts")


def narrow(value: int, column: str) -> int:
    """Clamp an accumulated count to the signed 64-bit column range."""
    if value > INT64_MAX:
        logger.warning("Clamping %s=%d to the 64-bit maximum", column, value)
        return INT64_MAX
    return max(value, 0)


class AlertClassifier:
    """Turns alert flag counts into summary columns.

    With ``count_out_of_range_as_critical`` set, out-of-range readings are also
    added to the critical-alert aggregate, matching the numbers the reporting
    UI has always shown.
    """

    metric_prefixes = ("alert_", *ALERT_BUCKETS)

    def __init__(self, count_out_of_range_as_critical: bool = True) -> None:
        self.count_out_of_range_as_critical = count_out_of_range_as_critical

    def classify(
        self,
        counts: AlertCounts,
        flagged: Iterable[DeviceReading],
        cohort: Iterable[str],
    ) -> ClassificationResult:
        buckets = BucketCollector(ALERT_BUCKETS)
        for reading in cohort_readings(flagged, cohort):
            if not reading.has_alert:
                continue
            evidence = {
                "device": reading.device_type.strip(),
                "critical_alert": reading.critical_alert,
                "out_of_range_alert": reading.out_of_range_alert,
                "escalation": reading.escalation,
            }
            if reading.critical_alert or (
                self.count_out_of_range_as_critical and reading.out_of_range_alert
            ):
                buckets.add("critical_alerts", reading, evidence)
            if reading.out_of_range_alert:
                buckets.add("out_of_range_alerts", reading, evidence)
            if reading.escalation:
                buckets.add("escalations", reading, evidence)
            buckets.add("total_alerts", reading, evidence)

        critical = counts.critical
        if self.count_out_of_range_as_critical:
            critical += counts.out_of_range
        aggregates = {
            "critical_alerts": critical,
            "out_of_range_alerts": counts.out_of_range,
            "escalations": counts.escalations,
            "total_alerts": counts.critical + counts.out_of_range + counts.escalations,
        }

        columns: dict = {
            "alert_total_readings": narrow(counts.total_readings, "alert_total_readings"),
        }
        for name, count in aggregates.items():
            patients = buckets.stat(name, counts.total_readings).patients
            stat = BucketStat(
                count=narrow(count, f"{name}_count"),
                percent=percentage(count, counts.total_readings),
                patients=patients,
            )
            columns.update(bucket_columns(name, stat))
        return ClassificationResult(columns=columns, evidence=buckets.evidence)
