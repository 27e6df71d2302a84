"""Cohort providers: practice + enrollment period -> patient ids."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol

from sqlalchemy import func, select

from rpm_metrics.models import PatientEnrollmentPeriod
from rpm_metrics.services.metrics.telemetry import PracticeSessionFactory


class CohortProvider(Protocol):
    async def get_cohort(self, practice_id: str, period: str) -> list[str]:
        ...


class SQLCohortProvider:
    """Reads the enrollment-period table maintained by the enrollment tracker.

    Patient ids are normalized by replacing ``-`` with ``_`` to match the ids
    the devices gateway stores.
    """

    def __init__(self, session_factory: PracticeSessionFactory):
        self._session_factory = session_factory

    async def get_cohort(self, practice_id: str, period: str) -> list[str]:
        query = (
            select(func.replace(PatientEnrollmentPeriod.patient_sub, "-", "_"))
            .where(
                PatientEnrollmentPeriod.practice_id == practice_id,
                PatientEnrollmentPeriod.enrollment_period == period,
            )
            .order_by(PatientEnrollmentPeriod.id)
        )
        async with self._session_factory(practice_id) as session:
            result = await session.execute(query)
            return list(result.scalars().all())


class InMemoryCohortProvider:
    """Cohort provider backed by a static mapping."""

    def __init__(self, cohorts: Mapping[tuple[str, str], Sequence[str]] | None = None):
        self._cohorts = {key: list(value) for key, value in (cohorts or {}).items()}

    def set_cohort(self, practice_id: str, period: str, patient_ids: Sequence[str]) -> None:
        self._cohorts[(practice_id, period)] = list(patient_ids)

    async def get_cohort(self, practice_id: str, period: str) -> list[str]:
        return [
            patient_id.replace("-", "_")
            for patient_id in self._cohorts.get((practice_id, period), [])
        ]
