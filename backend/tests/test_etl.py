from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from conftest import NOW, PRACTICE_A, PRACTICE_B, make_settings
from rpm_metrics.models import model_to_dict
from rpm_metrics.services.metrics import (
    ClinicalMetricsEtl,
    InMemoryCohortProvider,
    SchemaInitializationError,
)
from rpm_metrics.services.metrics.repository import ClinicalMetricsRepository
from rpm_metrics.services.metrics.telemetry import TelemetryReader
from rpm_metrics.services.metrics.thresholds import DeviceType, EnrollmentPeriod

BOOKKEEPING = {"id", "created_at", "updated_at"}


def _repository(etl, practice_id=PRACTICE_A):
    return etl._repository(practice_id)


async def _seed_two_patient_scenario(seed):
    await seed.enroll(PRACTICE_A, "first_month", "P-1", "P-2")
    await seed.readings(
        {"patient_sub": "P_1 ", "detailed_value": {"sysData": 150, "diaData": 85, "pulseData": 70}},
        {"patient_sub": "P_2", "detailed_value": {"sysData": 100, "diaData": 65, "pulseData": 80}},
        {
            "patient_sub": "P_1",
            "device_name": " Oxymeter",
            "detailed_value": {"spo2": 91, "pr": 72},
        },
        {
            "patient_sub": "P_2",
            "device_name": " Weight",
            "detailed_value": {"weight": 100},
            "timestamp": NOW - timedelta(days=200),
        },
        {
            "patient_sub": "P_2",
            "device_name": " Weight",
            "detailed_value": {"weight": 106},
            "out_of_range_alert": True,
        },
        {
            "patient_sub": "P_1",
            "device_name": " Blood Glucose",
            "detailed_value": {"bloodGlucose": 185, "type": "Fasting"},
            "critical_alert": True,
        },
    )


@pytest.mark.asyncio
async def test_end_to_end_two_patient_scenario(registry, seed):
    await _seed_two_patient_scenario(seed)
    etl = ClinicalMetricsEtl(registry, config=make_settings(practices=make_settings().practices[:1]))

    stats = await etl.run(now=NOW)

    assert stats.practices == 1
    assert stats.periods_processed == 1
    assert stats.periods_skipped == 4
    assert stats.failed_devices == []

    repository = _repository(etl)
    summary = await repository.get_summary(PRACTICE_A, "first_month")
    assert summary.total_patients == 2
    assert summary.summary_date == NOW.date()
    assert summary.bp_total_readings == 2
    assert summary.bp_normal_count == 1
    assert summary.bp_abnormal_count == 1
    assert summary.bp_sys_gt_140_dia_gt_80_count == 1
    assert summary.bp_sys_gt_150_dia_gt_80_count == 1
    assert summary.bp_sys_gt_160_dia_gt_80_count == 0
    assert summary.bp_avg_sys == 125.0
    assert summary.spo2_90_92_count == 1
    assert summary.weight_gain_4pct_count == 1
    assert summary.glucose_fasting_above_180_count == 1
    assert summary.alert_total_readings == 5
    assert summary.critical_alerts_count == 2
    assert summary.out_of_range_alerts_count == 1
    assert summary.total_alerts_count == 2

    evidence = await repository.list_evidence(summary.id, metric_name="bp_sys_gt_150_dia_gt_80")
    assert [(row.patient_sub, row.metric_value_detailed["sys"]) for row in evidence] == [("P_1", 150.0)]
    assert stats.evidence_rows == len(await repository.list_evidence(summary.id))


@pytest.mark.asyncio
async def test_rerun_produces_identical_output(registry, seed):
    await _seed_two_patient_scenario(seed)
    etl = ClinicalMetricsEtl(registry, config=make_settings(practices=make_settings().practices[:1]))
    repository = _repository(etl)

    async def snapshot():
        summary = await repository.get_summary(PRACTICE_A, "first_month")
        evidence = await repository.list_evidence(summary.id)
        rows = sorted(
            (
                row.patient_sub,
                row.metric_name,
                sorted(row.metric_value_detailed.items()),
                row.reading_timestamp,
            )
            for row in evidence
        )
        return summary.id, model_to_dict(summary, exclude=BOOKKEEPING), rows

    await etl.run(now=NOW)
    first = await snapshot()
    await etl.run(now=NOW)
    second = await snapshot()

    assert first == second


class FailingCohortProvider(InMemoryCohortProvider):
    def __init__(self, failing_practice, cohorts):
        super().__init__(cohorts)
        self.failing_practice = failing_practice

    async def get_cohort(self, practice_id, period):
        if practice_id == self.failing_practice:
            raise ConnectionError("enrollment database unavailable")
        return await super().get_cohort(practice_id, period)


@pytest.mark.asyncio
async def test_cohort_failure_skips_only_that_practice(registry, seed):
    await seed.readings(
        {"patient_sub": "P_7", "detailed_value": {"sysData": 120, "diaData": 70, "pulseData": 75}},
    )
    provider = FailingCohortProvider(PRACTICE_A, {(PRACTICE_B, "overall"): ["P-7"]})
    etl = ClinicalMetricsEtl(registry, cohort_provider=provider, config=make_settings())

    stats = await etl.run(now=NOW)

    assert stats.practices == 2
    assert stats.practices_failed == 1
    assert stats.periods_processed == 1
    summary = await _repository(etl, PRACTICE_B).get_summary(PRACTICE_B, "overall")
    assert summary.bp_normal_count == 1
    assert await _repository(etl).get_summary(PRACTICE_A, "overall") is None


@pytest.mark.asyncio
async def test_device_failure_keeps_previous_metrics_and_evidence(registry, seed, monkeypatch):
    await seed.readings(
        {"patient_sub": "P_1", "detailed_value": {"sysData": 165, "diaData": 85, "pulseData": 70}},
        {"patient_sub": "P_1", "device_name": " Oxymeter", "detailed_value": {"spo2": 85}},
    )
    provider = InMemoryCohortProvider({(PRACTICE_A, "overall"): ["P_1"]})
    etl = ClinicalMetricsEtl(
        registry,
        cohort_provider=provider,
        config=make_settings(practices=make_settings().practices[:1]),
        periods=[EnrollmentPeriod.OVERALL],
    )
    repository = _repository(etl)

    await etl.run(now=NOW)
    first = await repository.get_summary(PRACTICE_A, "overall")
    assert first.bp_sys_gt_160_dia_gt_80_count == 1

    await seed.readings(
        {"patient_sub": "P_1", "device_name": " Oxymeter", "detailed_value": {"spo2": 91}},
    )
    real_fetch = TelemetryReader.fetch

    async def _failing_bp_fetch(self, cohort, device_type, start, end):
        if device_type == DeviceType.BLOOD_PRESSURE:
            raise ConnectionError("connection reset while reading chunk")
        return await real_fetch(self, cohort, device_type, start, end)

    monkeypatch.setattr(TelemetryReader, "fetch", _failing_bp_fetch)

    stats = await etl.run(now=NOW + timedelta(hours=6))

    assert stats.failed_devices == [f"{PRACTICE_A}:overall:blood_pressure"]
    assert stats.periods_processed == 1
    summary = await repository.get_summary(PRACTICE_A, "overall")
    assert summary.id == first.id
    assert summary.bp_total_readings == 1
    assert summary.bp_sys_gt_160_dia_gt_80_count == 1
    assert summary.bp_avg_sys == 165.0
    assert summary.spo2_total_readings == 2
    assert summary.spo2_90_92_count == 1

    bp_evidence = await repository.list_evidence(summary.id, metric_name="bp_sys_gt_160_dia_gt_80")
    assert [row.patient_sub for row in bp_evidence] == ["P_1"]
    spo2_evidence = await repository.list_evidence(summary.id, metric_name="spo2_90_92")
    assert len(spo2_evidence) == 1


@pytest.mark.asyncio
async def test_classifier_failure_is_recorded_per_device(registry, seed, monkeypatch):
    await seed.readings(
        {"patient_sub": "P_1", "detailed_value": {"sysData": 120, "diaData": 70, "pulseData": 75}},
        {"patient_sub": "P_1", "device_name": " Oxymeter", "detailed_value": {"spo2": 85}},
    )
    provider = InMemoryCohortProvider({(PRACTICE_A, "overall"): ["P_1"]})
    etl = ClinicalMetricsEtl(
        registry,
        cohort_provider=provider,
        config=make_settings(),
        periods=[EnrollmentPeriod.OVERALL],
    )

    def _broken(*_args, **_kwargs):
        raise RuntimeError("classifier crashed")

    monkeypatch.setattr(etl.bp_classifier, "classify", _broken)

    stats = await etl.run(now=NOW)

    assert stats.failed_devices == [f"{PRACTICE_A}:overall:blood_pressure"]
    assert stats.periods_processed == 1
    summary = await _repository(etl).get_summary(PRACTICE_A, "overall")
    assert summary.bp_total_readings == 0
    assert summary.spo2_below_88_count == 1


@pytest.mark.asyncio
async def test_persist_failure_continues_with_next_period(registry, seed, monkeypatch):
    provider = InMemoryCohortProvider(
        {
            (PRACTICE_A, "first_month"): ["P_1"],
            (PRACTICE_A, "overall"): ["P_1"],
        }
    )
    etl = ClinicalMetricsEtl(
        registry,
        cohort_provider=provider,
        config=make_settings(practices=make_settings().practices[:1]),
        periods=[EnrollmentPeriod.FIRST_MONTH, EnrollmentPeriod.OVERALL],
    )
    real_upsert = ClinicalMetricsRepository.upsert_summary

    async def _flaky_upsert(self, practice_id, period, summary_date, columns, **kwargs):
        if period == "first_month":
            raise RuntimeError("deadlock detected")
        return await real_upsert(self, practice_id, period, summary_date, columns, **kwargs)

    monkeypatch.setattr(ClinicalMetricsRepository, "upsert_summary", _flaky_upsert)

    stats = await etl.run(now=NOW)

    assert stats.periods_failed == 1
    assert stats.periods_processed == 1
    assert await _repository(etl).get_summary(PRACTICE_A, "overall") is not None


@pytest.mark.asyncio
async def test_schema_failure_aborts_run(registry, monkeypatch):
    async def _broken_schema(self):
        raise PermissionError("permission denied for schema public")

    monkeypatch.setattr(ClinicalMetricsRepository, "ensure_schema", _broken_schema)
    etl = ClinicalMetricsEtl(registry, cohort_provider=InMemoryCohortProvider(), config=make_settings())

    with pytest.raises(SchemaInitializationError) as exc_info:
        await etl.run(now=NOW)

    assert isinstance(exc_info.value.__cause__, PermissionError)


@pytest.mark.asyncio
async def test_empty_cohorts_are_skipped(registry):
    etl = ClinicalMetricsEtl(registry, cohort_provider=InMemoryCohortProvider(), config=make_settings())

    stats = await etl.run(now=NOW)

    assert stats.practices == 2
    assert stats.periods_skipped == 10
    assert stats.periods_processed == 0
    assert stats.run_id


@pytest.mark.asyncio
async def test_practice_locked_by_another_process_is_skipped(registry, seed, monkeypatch):
    provider = InMemoryCohortProvider(
        {(PRACTICE_A, "overall"): ["P_1"], (PRACTICE_B, "overall"): ["P_1"]}
    )
    etl = ClinicalMetricsEtl(
        registry,
        cohort_provider=provider,
        config=make_settings(),
        periods=[EnrollmentPeriod.OVERALL],
    )

    @asynccontextmanager
    async def _held_elsewhere(self, practice_id):
        yield practice_id != PRACTICE_A

    monkeypatch.setattr(ClinicalMetricsRepository, "practice_lock", _held_elsewhere)

    stats = await etl.run(now=NOW)

    assert stats.practices_locked == 1
    assert stats.practices_failed == 0
    assert stats.periods_processed == 1
    assert await _repository(etl).get_summary(PRACTICE_A, "overall") is None
    assert await _repository(etl, PRACTICE_B).get_summary(PRACTICE_B, "overall") is not None
