"""Glucose classification by reading type (fasting, post-meal, random)."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from rpm_metrics.services.metrics.classifiers.base import (
    BucketCollector,
    ClassificationResult,
    cohort_readings,
    log_skipped,
)
from rpm_metrics.services.metrics.parsers import parse_glucose
from rpm_metrics.services.metrics.readings import DeviceReading
from rpm_metrics.services.metrics.thresholds import (
    GLUCOSE_FASTING_HIGH,
    GLUCOSE_FASTING_LOW,
    GLUCOSE_POSTMEAL_HIGH,
    GLUCOSE_RANDOM_HIGH,
    GLUCOSE_RANDOM_LOW,
)

# Summary column prefix per resolved category
CATEGORY_PREFIXES = {
    "fasting": "glucose_fasting",
    "post_meal": "glucose_postmeal",
    "random": "glucose_random",
}


def _rules(
    prefix: str,
    highs: tuple[float, ...],
    lows: tuple[float, ...] = (),
) -> tuple[tuple[str, Callable[[float], bool]], ...]:
    rules: list[tuple[str, Callable[[float], bool]]] = []
    for cutoff in highs:
        rules.append((f"{prefix}_above_{int(cutoff)}", lambda v, c=cutoff: v > c))
    for cutoff in lows:
        rules.append((f"{prefix}_below_{int(cutoff)}", lambda v, c=cutoff: v < c))
    return tuple(rules)


GLUCOSE_RULES: dict[str, tuple[tuple[str, Callable[[float], bool]], ...]] = {
    "fasting": _rules("glucose_fasting", GLUCOSE_FASTING_HIGH, GLUCOSE_FASTING_LOW),
    "post_meal": _rules("glucose_postmeal", GLUCOSE_POSTMEAL_HIGH),
    "random": _rules("glucose_random", GLUCOSE_RANDOM_HIGH, GLUCOSE_RANDOM_LOW),
}


class GlucoseClassifier:
    device = "glucose"
    metric_prefixes = ("glucose_",)

    def classify(
        self,
        readings: Iterable[DeviceReading],
        cohort: Iterable[str],
    ) -> ClassificationResult:
        bucket_category = {
            name: category
            for category, rules in GLUCOSE_RULES.items()
            for name, _ in rules
        }
        buckets = BucketCollector(bucket_category)
        totals = {category: 0 for category in GLUCOSE_RULES}
        patients: dict[str, set[str]] = {category: set() for category in GLUCOSE_RULES}

        for reading in cohort_readings(readings, cohort):
            try:
                value = parse_glucose(reading.raw_value, reading.entry_type)
                if value.value is None or value.value <= 0:
                    continue
                category = value.category
                totals[category] += 1
                patients[category].add(reading.patient_id)
                evidence = {"value": value.value, "type": value.type or category}
                for name, rule in GLUCOSE_RULES[category]:
                    if rule(value.value):
                        buckets.add(name, reading, evidence)
            except Exception:
                log_skipped(self.device, reading)

        columns: dict = {}
        for category, prefix in CATEGORY_PREFIXES.items():
            columns[f"{prefix}_total"] = totals[category]
            columns[f"{prefix}_patients_count"] = len(patients[category])
        columns.update(
            buckets.columns({name: totals[cat] for name, cat in bucket_category.items()})
        )
        return ClassificationResult(columns=columns, evidence=buckets.evidence)
