#!/usr/bin/env python3
"""
BigQuery job history source.

Reads one row per query job from INFORMATION_SCHEMA.JOBS for a project and
region. The engine does all aggregation; the query only selects and filters.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from google.cloud import bigquery

from bq_cost_monitor.errors import RecordSourceError
from bq_cost_monitor.logger import log_function_call
from bq_cost_monitor.models import DateRange
from bq_cost_monitor.retry import TRANSIENT_RETRY
from bq_cost_monitor.sources.base import RecordSource

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = "US"
DEFAULT_QUERY_TIMEOUT_SECONDS = 180

JOB_COLUMNS = """
    job_id,
    project_id,
    user_email,
    creation_time,
    statement_type,
    priority,
    query,
    total_bytes_processed,
    total_bytes_billed,
    total_slot_ms,
    cache_hit,
    error_result IS NOT NULL AS has_error,
    destination_table,
    referenced_tables
"""


def jobs_view(project_id: str, location: str = DEFAULT_LOCATION) -> str:
    """Fully qualified JOBS view, e.g. ``my-project.region-us.INFORMATION_SCHEMA.JOBS``."""
    return f"`{project_id}.region-{location.lower()}.INFORMATION_SCHEMA.JOBS`"


class BigQueryJobSource(RecordSource):
    """Query jobs of one project, read from INFORMATION_SCHEMA."""

    def __init__(
        self,
        project_id: str,
        location: str = DEFAULT_LOCATION,
        timeout: int = DEFAULT_QUERY_TIMEOUT_SECONDS,
        client: Optional[bigquery.Client] = None,
    ):
        if not project_id:
            raise ValueError("project_id is required for BigQueryJobSource")
        super().__init__(project_id)
        self.location = location
        self.timeout = timeout
        self.client = client or bigquery.Client(project=project_id)

    def build_jobs_query(self) -> str:
        """Job-level query for a date window passed as @start_date / @end_date."""
        return f"""
        SELECT {JOB_COLUMNS}
        FROM {jobs_view(self.project_id, self.location)}
        WHERE
            creation_time >= TIMESTAMP(@start_date)
            AND creation_time < TIMESTAMP_ADD(TIMESTAMP(@end_date), INTERVAL 1 DAY)
            AND job_type = 'QUERY'
        ORDER BY creation_time
        """

    def _job_config(self, window: DateRange) -> bigquery.QueryJobConfig:
        return bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("start_date", "DATE", window.start),
                bigquery.ScalarQueryParameter("end_date", "DATE", window.end),
            ],
            use_query_cache=False,
        )

    def fetch(self, window: DateRange) -> Iterator[Dict[str, Any]]:
        """
        Run the job query for ``window`` and stream the rows back as dicts.

        Raises:
            RecordSourceError: if the query cannot be run
        """
        query = self.build_jobs_query()
        job_config = self._job_config(window)
        logger.info(
            f"Querying job history for {self.project_id} ({self.location}) "
            f"{window.start}..{window.end}"
        )

        @TRANSIENT_RETRY
        def _run():
            query_job = self.client.query(query, job_config=job_config, location=self.location)
            return query_job.result(timeout=self.timeout)

        try:
            rows = _run()
        except Exception as e:
            raise RecordSourceError(f"BigQuery execution error: {e}", self.project_id) from e

        return self._iter_rows(rows)

    def _iter_rows(self, rows) -> Iterator[Dict[str, Any]]:
        count = 0
        for row in rows:
            count += 1
            yield dict(row.items())
        logger.info(f"Retrieved {count} job records for {self.project_id}")

    @log_function_call()
    def health_check(self) -> Dict[str, Any]:
        """Check that the JOBS view of the project is reachable (dry run only)."""
        try:
            job_config = bigquery.QueryJobConfig(dry_run=True)
            self.client.query(
                f"SELECT COUNT(*) AS job_count FROM {jobs_view(self.project_id, self.location)} "
                f"WHERE creation_time >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL 1 DAY)",
                job_config=job_config,
                location=self.location,
            )
            return {
                "success": True,
                "status": "healthy",
                "project_id": self.project_id,
                "location": self.location,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        except Exception as e:
            return {
                "success": False,
                "status": "unhealthy",
                "project_id": self.project_id,
                "location": self.location,
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "suggestions": [
                    "Check GOOGLE_APPLICATION_CREDENTIALS environment variable",
                    "Ensure IAM permissions: bigquery.jobs.listAll, bigquery.jobs.create",
                    "Confirm the project ID and location are correct",
                ],
            }
