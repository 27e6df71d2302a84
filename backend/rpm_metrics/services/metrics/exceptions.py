class MetricsEtlError(Exception):
    """Base error for the clinical metrics ETL."""


class SchemaInitializationError(MetricsEtlError):
    """Output tables could not be created; the whole run is aborted."""


class CohortLookupError(MetricsEtlError):
    """Cohort membership could not be read for a practice."""

    def __init__(self, practice_id: str, period: str) -> None:
        super().__init__(f"Cohort lookup failed for practice={practice_id} period={period}")
        self.practice_id = practice_id
        self.period = period
