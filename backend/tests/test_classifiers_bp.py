import logging

import pytest

from conftest import make_reading
from rpm_metrics.services.metrics.classifiers import blood_pressure
from rpm_metrics.services.metrics.classifiers.blood_pressure import (
    BP_BUCKET_RULES,
    BloodPressureClassifier,
)

HIGH_BUCKETS = [
    "bp_sys_gt_130_dia_gt_80",
    "bp_sys_gt_140_dia_gt_80",
    "bp_sys_gt_150_dia_gt_80",
    "bp_sys_gt_160_dia_gt_80",
]


def _classify(*payloads, cohort=None):
    readings = [
        make_reading(patient, payload, reading_id=index)
        for index, (patient, payload) in enumerate(payloads, start=1)
    ]
    cohort = cohort or sorted({patient for patient, _ in payloads})
    return BloodPressureClassifier().classify(readings, cohort)


def test_rules_are_ordered_from_least_to_most_severe():
    assert [name for name, _ in BP_BUCKET_RULES][:4] == HIGH_BUCKETS


def test_normal_reading():
    result = _classify(("P1", {"sysData": 120, "diaData": 70, "pulseData": 75}))

    assert result.columns["bp_normal_count"] == 1
    assert result.columns["bp_abnormal_count"] == 0
    assert result.columns["bp_normal_percent"] == 100.0
    assert result.columns["bp_normal_avg_sys"] == 120.0


def test_moderate_high_reading_only_in_lower_buckets():
    result = _classify(("P1", {"sysData": 145, "diaData": 85, "pulseData": 70}))

    assert result.columns["bp_sys_gt_130_dia_gt_80_count"] == 1
    assert result.columns["bp_sys_gt_140_dia_gt_80_count"] == 1
    assert result.columns["bp_sys_gt_150_dia_gt_80_count"] == 0
    assert result.columns["bp_sys_gt_160_dia_gt_80_count"] == 0
    assert result.columns["bp_abnormal_count"] == 1


def test_severe_reading_in_every_cumulative_bucket():
    result = _classify(("P1", {"sysData": 165, "diaData": 85, "pulseData": 70}))

    for name in HIGH_BUCKETS:
        assert result.columns[f"{name}_count"] == 1
        assert result.columns[f"{name}_patients"] == 1


def test_high_buckets_need_diastolic_above_80():
    result = _classify(("P1", {"sysData": 170, "diaData": 80, "pulseData": 70}))

    for name in HIGH_BUCKETS:
        assert result.columns[f"{name}_count"] == 0


@pytest.mark.parametrize("systolic", [129, 130, 139, 140, 149, 150, 159, 160, 161, 200])
def test_cumulative_buckets_are_supersets(systolic):
    result = _classify(("P1", {"sysData": systolic, "diaData": 90, "pulseData": 70}))

    counts = [result.columns[f"{name}_count"] for name in HIGH_BUCKETS]
    assert counts == sorted(counts, reverse=True)
    for lower, higher in zip(HIGH_BUCKETS, HIGH_BUCKETS[1:]):
        lower_ids = {item.patient_id for item in result.evidence[lower]}
        higher_ids = {item.patient_id for item in result.evidence[higher]}
        assert higher_ids <= lower_ids


def test_averages_skip_zero_values_per_vital():
    result = _classify(
        ("P1", {"sysData": 0, "diaData": 70, "pulseData": 70}),
        ("P2", {"sysData": 120, "diaData": 80, "pulseData": 80}),
    )

    assert result.columns["bp_avg_sys"] == 120.0
    assert result.columns["bp_avg_dia"] == 75.0
    assert result.columns["bp_avg_hr"] == 75.0


def test_two_patient_scenario():
    result = _classify(
        ("P1", {"sysData": 150, "diaData": 85, "pulseData": 70}),
        ("P2", {"sysData": 100, "diaData": 65, "pulseData": 80}),
    )

    assert result.columns["bp_total_readings"] == 2
    assert result.columns["bp_patients_count"] == 2
    assert result.columns["bp_normal_count"] == 1
    assert result.columns["bp_abnormal_count"] == 1
    assert result.columns["bp_sys_gt_140_dia_gt_80_count"] == 1
    assert result.columns["bp_sys_gt_150_dia_gt_80_count"] == 1
    assert result.columns["bp_avg_sys"] == 125.0
    assert result.columns["bp_abnormal_percent"] == 50.0


def test_low_pressure_and_heart_rate_buckets():
    result = _classify(
        ("P1", {"sysData": 85, "diaData": 55, "pulseData": 130}),
        ("P2", {"sysData": 120, "diaData": 70, "pulseData": 45}),
    )

    assert result.columns["bp_sys_lt_90_dia_lt_60_count"] == 1
    assert result.columns["bp_hr_abnormal_count"] == 2
    assert result.columns["bp_hr_abnormal_patients"] == 2
    assert result.columns["bp_abnormal_count"] == 2


def test_arrhythmia_from_ihb_flag():
    result = _classify(
        ("P1", {"sysData": 120, "diaData": 70, "pulseData": 75, "ihb": True}),
        ("P2", {"sysData": 120, "diaData": 70, "pulseData": 75, "arrhythmia": 0}),
    )

    assert result.columns["bp_arrhythmia_count"] == 1
    assert result.evidence["bp_arrhythmia"][0].patient_id == "P1"


def test_missing_vital_is_abnormal_not_normal():
    result = _classify(("P1", {"sysData": 120, "diaData": 70}))

    assert result.columns["bp_normal_count"] == 0
    assert result.columns["bp_abnormal_count"] == 1
    assert result.columns["bp_hr_abnormal_count"] == 0


def test_payload_without_vitals_is_abnormal():
    result = _classify(
        ("P1", None),
        ("P2", {"sysData": 120, "diaData": 70, "pulseData": 75}),
        ("P3", {"foo": 1}),
    )

    assert result.columns["bp_total_readings"] == 3
    assert result.columns["bp_normal_count"] == 1
    assert result.columns["bp_abnormal_count"] == 2
    assert result.columns["bp_avg_sys"] == 120.0
    assert {item.patient_id for item in result.evidence["bp_abnormal"]} == {"P1", "P3"}


def test_normal_and_abnormal_partition_the_total():
    result = _classify(
        ("P1", {"sysData": 120, "diaData": 70, "pulseData": 75}),
        ("P2", {"foo": 1}),
        ("P3", {"sysData": 120}),
        ("P4", "not json at all"),
        ("P5", {"sysData": 165, "diaData": 95, "pulseData": 110}),
    )

    columns = result.columns
    assert columns["bp_normal_count"] + columns["bp_abnormal_count"] == columns["bp_total_readings"]
    assert columns["bp_normal_percent"] + columns["bp_abnormal_percent"] == 100.0


def test_readings_outside_cohort_are_ignored():
    result = _classify(
        ("P1", {"sysData": 120, "diaData": 70, "pulseData": 75}),
        ("P9", {"sysData": 180, "diaData": 95, "pulseData": 75}),
        cohort=["P1"],
    )

    assert result.columns["bp_total_readings"] == 1
    assert result.columns["bp_sys_gt_130_dia_gt_80_count"] == 0


def test_evidence_carries_reading_values():
    result = _classify(("P1", {"sysData": 165, "diaData": 85, "pulseData": 70}))

    item = result.evidence["bp_sys_gt_160_dia_gt_80"][0]
    assert item.patient_id == "P1"
    assert item.value == {"sys": 165.0, "dia": 85.0, "hr": 70.0, "arrhythmia": None}
    assert item.timestamp is not None


def test_unreadable_reading_is_logged_and_skipped(monkeypatch, caplog):
    real_parse = blood_pressure.parse_bp

    def _flaky_parse(raw):
        if raw and "boom" in raw:
            raise RuntimeError("decoder crashed")
        return real_parse(raw)

    monkeypatch.setattr(blood_pressure, "parse_bp", _flaky_parse)

    with caplog.at_level(logging.WARNING, logger="rpm_metrics.classifiers"):
        result = _classify(
            ("P1", '{"sysData": 120, "boom": 1}'),
            ("P2", {"sysData": 120, "diaData": 70, "pulseData": 75}),
        )

    assert result.columns["bp_total_readings"] == 1
    assert result.columns["bp_normal_count"] == 1
    assert result.columns["bp_abnormal_count"] == 0
    assert "Skipping unreadable blood pressure reading" in caplog.text
