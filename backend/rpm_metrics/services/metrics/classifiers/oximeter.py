from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from rpm_metrics.services.metrics.classifiers.base import (
    BucketCollector,
    ClassificationResult,
    cohort_readings,
    log_skipped,
)
from rpm_metrics.services.metrics.parsers import parse_spo2
from rpm_metrics.services.metrics.readings import DeviceReading
from rpm_metrics.services.metrics.thresholds import (
    SPO2_BANDS,
    SPO2_SEVERE_BELOW,
    SPO2_SEVERE_BUCKET,
)

SPO2_BUCKETS = (*(name for name, _, _ in SPO2_BANDS), SPO2_SEVERE_BUCKET)


def spo2_band(spo2: float) -> Optional[str]:
    """First matching band in priority order, or None for healthy saturation."""
    for name, low, high in SPO2_BANDS:
        if low <= spo2 <= high:
            return name
    if spo2 < SPO2_SEVERE_BELOW:
        return SPO2_SEVERE_BUCKET
    return None


class OximeterClassifier:
    device = "oximeter"
    metric_prefixes = ("spo2_",)

    def classify(
        self,
        readings: Iterable[DeviceReading],
        cohort: Iterable[str],
    ) -> ClassificationResult:
        buckets = BucketCollector(SPO2_BUCKETS)
        total = 0
        patients: set[str] = set()

        for reading in cohort_readings(readings, cohort):
            try:
                value = parse_spo2(reading.raw_value)
                if value.spo2 is None or value.spo2 <= 0:
                    continue
                total += 1
                patients.add(reading.patient_id)
                band = spo2_band(value.spo2)
                if band is not None:
                    buckets.add(band, reading, {"spo2": value.spo2, "pulse": value.pulse})
            except Exception:
                log_skipped(self.device, reading)

        columns = {
            "spo2_total_readings": total,
            "spo2_patients_count": len(patients),
        }
        columns.update(buckets.columns(total))
        return ClassificationResult(columns=columns, evidence=buckets.evidence)
