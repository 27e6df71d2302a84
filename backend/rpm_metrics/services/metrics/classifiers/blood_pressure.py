"""Blood pressure classification."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import partial
from typing import Optional

from rpm_metrics.services.metrics.classifiers.base import (
    BucketCollector,
    ClassificationResult,
    average,
    cohort_readings,
    log_skipped,
)
from rpm_metrics.services.metrics.parsers import BloodPressureValue, parse_bp
from rpm_metrics.services.metrics.readings import DeviceReading
from rpm_metrics.services.metrics.thresholds import (
    BP_DIA_NORMAL,
    BP_HIGH_DIA,
    BP_HIGH_SYS_CUTOFFS,
    BP_HR_HIGH,
    BP_HR_LOW,
    BP_HR_NORMAL,
    BP_LOW_DIA,
    BP_LOW_SYS,
    BP_SYS_NORMAL,
)


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _within(value: Optional[float], bounds: tuple[float, float]) -> bool:
    return value is not None and bounds[0] <= value <= bounds[1]


def is_normal(value: BloodPressureValue) -> bool:
    return (
        _within(value.sys, BP_SYS_NORMAL)
        and _within(value.dia, BP_DIA_NORMAL)
        and _within(value.hr, BP_HR_NORMAL)
    )


def _systolic_high(cutoff: float, value: BloodPressureValue) -> bool:
    # Systolic cutoffs are inclusive so a reading of exactly 150 counts as >150.
    return (
        value.sys is not None
        and value.dia is not None
        and value.sys >= cutoff
        and value.dia > BP_HIGH_DIA
    )


def _low(value: BloodPressureValue) -> bool:
    return (
        _positive(value.sys)
        and _positive(value.dia)
        and value.sys < BP_LOW_SYS
        and value.dia < BP_LOW_DIA
    )


def _heart_rate_abnormal(value: BloodPressureValue) -> bool:
    return _positive(value.hr) and (value.hr < BP_HR_LOW or value.hr > BP_HR_HIGH)


# Evaluated independently; a reading lands in every bucket whose rule matches.
BP_BUCKET_RULES: tuple[tuple[str, Callable[[BloodPressureValue], bool]], ...] = (
    *(
        (f"bp_sys_gt_{int(cutoff)}_dia_gt_80", partial(_systolic_high, cutoff))
        for cutoff in BP_HIGH_SYS_CUTOFFS
    ),
    ("bp_sys_lt_90_dia_lt_60", _low),
    ("bp_hr_abnormal", _heart_rate_abnormal),
)

BP_BUCKETS = (
    "bp_normal",
    "bp_abnormal",
    "bp_arrhythmia",
    *(name for name, _ in BP_BUCKET_RULES),
)


def _evidence_value(value: BloodPressureValue) -> dict:
    return {
        "sys": value.sys,
        "dia": value.dia,
        "hr": value.hr,
        "arrhythmia": value.arrhythmia,
    }


class BloodPressureClassifier:
    device = "blood pressure"
    metric_prefixes = ("bp_",)

    def classify(
        self,
        readings: Iterable[DeviceReading],
        cohort: Iterable[str],
    ) -> ClassificationResult:
        buckets = BucketCollector(BP_BUCKETS)
        total = 0
        patients: set[str] = set()
        sys_values: list[float] = []
        dia_values: list[float] = []
        hr_values: list[float] = []
        normal_sys: list[float] = []
        normal_dia: list[float] = []
        normal_hr: list[float] = []

        for reading in cohort_readings(readings, cohort):
            try:
                value = parse_bp(reading.raw_value)
            except Exception:
                log_skipped(self.device, reading)
                continue

            # Every counted reading is either normal or abnormal; a payload
            # without vitals is abnormal.
            total += 1
            patients.add(reading.patient_id)
            evidence = _evidence_value(value)

            # Each vital averages independently; zeros are missing readings.
            if _positive(value.sys):
                sys_values.append(value.sys)
            if _positive(value.dia):
                dia_values.append(value.dia)
            if _positive(value.hr):
                hr_values.append(value.hr)

            if is_normal(value):
                buckets.add("bp_normal", reading, evidence)
                normal_sys.append(value.sys)
                normal_dia.append(value.dia)
                normal_hr.append(value.hr)
            else:
                buckets.add("bp_abnormal", reading, evidence)

            if value.arrhythmia == 1:
                buckets.add("bp_arrhythmia", reading, evidence)

            for name, rule in BP_BUCKET_RULES:
                if rule(value):
                    buckets.add(name, reading, evidence)

        columns = {
            "bp_total_readings": total,
            "bp_patients_count": len(patients),
            "bp_avg_sys": average(sys_values),
            "bp_avg_dia": average(dia_values),
            "bp_avg_hr": average(hr_values),
            "bp_normal_avg_sys": average(normal_sys),
            "bp_normal_avg_dia": average(normal_dia),
            "bp_normal_avg_hr": average(normal_hr),
        }
        columns.update(buckets.columns(total))
        return ClassificationResult(columns=columns, evidence=buckets.evidence)
