"""Clinical metrics ETL for remote patient monitoring telemetry."""

__version__ = "0.1.0"
