from __future__ import annotations

from collections.abc import Iterable, Mapping

from rpm_metrics.services.metrics.classifiers.base import (
    BucketCollector,
    ClassificationResult,
    cohort_readings,
    log_skipped,
)
from rpm_metrics.services.metrics.parsers import parse_weight
from rpm_metrics.services.metrics.readings import DeviceReading
from rpm_metrics.services.metrics.thresholds import WEIGHT_GAIN_PERCENT

WEIGHT_GAIN_BUCKET = "weight_gain_4pct"


def percent_change(value: float, baseline: float) -> float:
    return (value - baseline) / baseline * 100


class WeightClassifier:
    """Flags readings that gained more than the threshold over the patient's first weight.

    Baselines come from the earliest weight ever recorded for the patient, not
    from the period being classified.
    """

    device = "weight"
    metric_prefixes = ("weight_",)

    def classify(
        self,
        readings: Iterable[DeviceReading],
        cohort: Iterable[str],
        baselines: Mapping[str, float],
    ) -> ClassificationResult:
        buckets = BucketCollector((WEIGHT_GAIN_BUCKET,))
        total = 0
        patients: set[str] = set()

        for reading in cohort_readings(readings, cohort):
            try:
                value = parse_weight(reading.raw_value)
                if value.weight is None or value.weight <= 0:
                    continue
                total += 1
                patients.add(reading.patient_id)

                baseline = baselines.get(reading.patient_id.strip())
                if not baseline or baseline <= 0:
                    continue
                change = percent_change(value.weight, baseline)
                if change > WEIGHT_GAIN_PERCENT:
                    buckets.add(
                        WEIGHT_GAIN_BUCKET,
                        reading,
                        {
                            "weight": value.weight,
                            "baseline": baseline,
                            "change_pct": round(change, 2),
                        },
                    )
            except Exception:
                log_skipped(self.device, reading)

        columns = {
            "weight_total_readings": total,
            "weight_patients_count": len(patients),
        }
        columns.update(buckets.columns(total))
        return ClassificationResult(columns=columns, evidence=buckets.evidence)
