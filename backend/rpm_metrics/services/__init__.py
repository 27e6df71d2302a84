"""ETL services for the clinical metrics job."""
