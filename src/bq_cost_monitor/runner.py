#!/usr/bin/env python3
"""
Multi-project monitor runner.

Runs the aggregation pipeline for every configured project on a bounded
worker pool, writes each run through a sink and keeps one project's failure
from affecting the others.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bq_cost_monitor.config.settings import ProjectSettings, Settings
from bq_cost_monitor.engine.pipeline import CostAttributionPipeline
from bq_cost_monitor.logger import PerformanceLogger, StructuredLogger
from bq_cost_monitor.models import DateRange, round_usd
from bq_cost_monitor.sinks import GcsSummarySink, LocalJsonSink, SummarySink
from bq_cost_monitor.sources import BigQueryJobSource, RecordSource

SourceFactory = Callable[[ProjectSettings, Settings], RecordSource]


def bigquery_source_factory(project: ProjectSettings, settings: Settings) -> RecordSource:
    return BigQueryJobSource(
        project_id=project.id,
        location=project.location,
        timeout=settings.query_timeout_seconds,
    )


def default_sink(settings: Settings) -> SummarySink:
    if settings.storage_bucket:
        return GcsSummarySink(settings.storage_bucket, settings.results_prefix)
    return LocalJsonSink(settings.output_dir)


@dataclass
class ProjectRunOutcome:
    """What happened to one project in a multi-project run."""
    project_id: str
    project_name: str
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    records: int = 0
    summaries: int = 0
    total_cost_usd: float = 0.0
    total_queries: int = 0
    skipped_records: int = 0
    elapsed_seconds: float = 0.0
    output_path: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
            "records": self.records,
            "summaries": self.summaries,
            "total_cost_usd": round_usd(self.total_cost_usd),
            "total_queries": self.total_queries,
            "skipped_records": self.skipped_records,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "output_path": self.output_path,
            "timestamp": self.timestamp.isoformat(),
        }


class MonitorRunner:
    """Runs the cost monitor across projects."""

    def __init__(
        self,
        settings: Settings,
        source_factory: Optional[SourceFactory] = None,
        sink: Optional[SummarySink] = None,
    ):
        self.settings = settings
        self.source_factory = source_factory or bigquery_source_factory
        self.sink = sink or default_sink(settings)
        self.logger = StructuredLogger(__name__, enable_json=settings.enable_json_logging)
        self.perf_logger = PerformanceLogger()

    def run_project(
        self,
        project: ProjectSettings,
        window: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> ProjectRunOutcome:
        """
        Monitor one project.

        Never raises: source, aggregation and sink errors are logged and
        recorded on the returned outcome.
        """
        started = time.perf_counter()
        self.logger.info(f"Monitoring project: {project.name} ({project.id})",
                         project_id=project.id, location=project.location)

        try:
            pipeline = CostAttributionPipeline(self.settings.engine, project_id=project.id)
            source = self.source_factory(project, self.settings)
            result = pipeline.run_source(source, window=window, today=today)
            output_path = self.sink.write_run(project.id, result)
        except Exception as e:
            elapsed = time.perf_counter() - started
            self.logger.error(f"Error monitoring project {project.name}", error=e, project_id=project.id)
            return ProjectRunOutcome(
                project_id=project.id,
                project_name=project.name,
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                elapsed_seconds=elapsed,
            )

        elapsed = time.perf_counter() - started
        self.perf_logger.log_timing("run_project", elapsed * 1000, {
            "project_id": project.id,
            "records": result.records_valid,
            "cost_usd": round_usd(result.total_cost_usd),
        })
        return ProjectRunOutcome(
            project_id=project.id,
            project_name=project.name,
            success=True,
            records=result.records_valid,
            summaries=len(result.summaries),
            total_cost_usd=result.total_cost_usd,
            total_queries=result.total_queries,
            skipped_records=result.skipped_records,
            elapsed_seconds=elapsed,
            output_path=output_path,
        )

    def run_all(
        self,
        projects: Optional[List[ProjectSettings]] = None,
        window: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> List[ProjectRunOutcome]:
        """
        Monitor every enabled project concurrently.

        Args:
            projects: Projects to run, the configured ones when omitted
            window: Shared date window, the configured history window when omitted
            today: Reference date for the default window

        Returns:
            One outcome per enabled project, in configuration order
        """
        started = time.perf_counter()
        projects = self.settings.projects if projects is None else projects

        enabled = []
        for project in projects:
            if project.disabled:
                self.logger.info(f"Skipping disabled project: {project.name} ({project.id})")
                continue
            enabled.append(project)

        self.logger.info("Starting BigQuery cost monitoring", projects=len(enabled),
                         max_workers=self.settings.max_workers)

        outcomes: List[ProjectRunOutcome] = []
        if enabled:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
                outcomes = list(executor.map(lambda p: self.run_project(p, window, today), enabled))

        summary_path = None
        try:
            summary_path = self.sink.write_run_summary([outcome.to_dict() for outcome in outcomes])
        except Exception as e:
            self.logger.error("Failed to write run summary", error=e)

        elapsed = time.perf_counter() - started
        self.logger.info(f"Cost monitoring completed in {elapsed:.2f} seconds",
                         summary_path=summary_path, projects=len(outcomes))
        for outcome in outcomes:
            if outcome.success:
                self.logger.info(
                    f"- {outcome.project_id}: {outcome.records} records, "
                    f"${outcome.total_cost_usd:.2f} estimated cost"
                )
            else:
                self.logger.warning(f"- {outcome.project_id}: ERROR - {outcome.error}")
        return outcomes
