#!/usr/bin/env python3
"""
Cost Attribution Pipeline

Runs the stages in order for one record window:
ingest -> classify/attribute -> aggregate -> top-N rollups -> assemble.

The record stream is buffered in full before any aggregation, so a source
that fails half-way aborts the run without producing partial summaries.
"""

import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bq_cost_monitor.config.settings import EngineSettings
from bq_cost_monitor.engine.aggregator import aggregate, sort_summaries
from bq_cost_monitor.engine.attribution import attribute
from bq_cost_monitor.engine.identity import IdentityNormalizer
from bq_cost_monitor.engine.ingestion import IngestionResult, RecordIngestor
from bq_cost_monitor.errors import RecordSourceError
from bq_cost_monitor.logger import log_pipeline_stage
from bq_cost_monitor.models import DateRange, RawQueryRecord, RunResult, TableAttribution

logger = logging.getLogger(__name__)

PARTITION_KEYS = {
    "date": lambda record: record.date,
    "project": lambda record: record.project_id,
}


@log_pipeline_stage("attribute")
def attribute_records(records: Iterable[RawQueryRecord], match_project: bool = False) -> List[TableAttribution]:
    return [attribution for record in records for attribution in attribute(record, match_project)]


class CostAttributionPipeline:
    """Stateless batch pipeline; every run re-derives everything from its input."""

    def __init__(self, settings: Optional[EngineSettings] = None, project_id: Optional[str] = None):
        self.settings = settings or EngineSettings()
        self.project_id = project_id
        self.normalizer = IdentityNormalizer.from_settings(self.settings)
        self.ingestor = RecordIngestor(
            default_project_id=project_id,
            max_text_length=self.settings.query_text_max_length,
            excluded_statement_types=self.settings.excluded_statement_types,
        )

    def default_window(self, today: Optional[date] = None) -> DateRange:
        return DateRange.last_n_days(self.settings.history_window_days, today)

    def _buffer(self, rows: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        try:
            return list(rows)
        except RecordSourceError:
            raise
        except Exception as e:
            raise RecordSourceError(f"Failed to read job records: {e}", self.project_id) from e

    @log_pipeline_stage("ingest")
    def ingest(self, rows: Iterable[Mapping[str, Any]], window: Optional[DateRange] = None) -> IngestionResult:
        return self.ingestor.ingest(rows, window)

    def _aggregate(self, records: List[RawQueryRecord], window: DateRange):
        attributions = attribute_records(records, self.settings.rebuild_match_project)
        return aggregate(records, attributions, window, self.settings, self.normalizer)

    def _result(self, ingestion: IngestionResult, summaries, window: DateRange, started: float) -> RunResult:
        result = RunResult(
            project_id=self.project_id,
            window=window,
            summaries=summaries,
            records_read=ingestion.records_read,
            records_valid=len(ingestion.records),
            skipped_records=ingestion.skipped_records,
            skip_reasons=dict(ingestion.skip_reasons),
            out_of_window=ingestion.out_of_window,
            excluded_records=ingestion.excluded_records,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        if not result.data_available:
            logger.info(f"No job records available for {self.project_id or 'input'} in {window.start}..{window.end}")
        logger.info(
            f"Aggregation run complete for {self.project_id or 'input'}: "
            f"{result.records_read} read, {result.records_valid} valid, {result.skipped_records} skipped, "
            f"{len(result.summaries)} summaries, ${result.total_cost_usd:.2f} estimated"
        )
        return result

    def run(
        self,
        rows: Iterable[Mapping[str, Any]],
        window: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> RunResult:
        """
        Aggregate one window of raw job rows.

        Args:
            rows: Raw job rows (mappings); consumed once
            window: Dates to aggregate; defaults to the configured history window ending ``today``
            today: Reference date for the default window (UTC today when omitted)

        Returns:
            RunResult with summaries and skip/exclusion counts

        Raises:
            RecordSourceError: if enumerating ``rows`` fails
        """
        started = time.perf_counter()
        window = window or self.default_window(today)

        buffered = self._buffer(rows)
        ingestion = self.ingest(buffered, window)
        summaries = self._aggregate(ingestion.records, window)
        return self._result(ingestion, summaries, window, started)

    def run_source(self, source, window: Optional[DateRange] = None, today: Optional[date] = None) -> RunResult:
        """Fetch rows from a RecordSource and run; fetch failures surface as RecordSourceError."""
        window = window or self.default_window(today)
        try:
            rows = source.fetch(window)
        except RecordSourceError:
            raise
        except Exception as e:
            raise RecordSourceError(f"Failed to open record source: {e}", self.project_id) from e
        return self.run(rows, window=window)

    def run_partitioned(
        self,
        rows: Iterable[Mapping[str, Any]],
        partition_by: str = "date",
        max_workers: int = 4,
        window: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> RunResult:
        """
        Same result as ``run``, aggregating each date or project partition on its own worker.

        Partitions share no state, and the grouping key already contains both the
        date and the project, so the partial summary lists are simply concatenated.
        """
        if partition_by not in PARTITION_KEYS:
            raise ValueError(f"partition_by must be one of {sorted(PARTITION_KEYS)}, got {partition_by!r}")

        started = time.perf_counter()
        window = window or self.default_window(today)

        buffered = self._buffer(rows)
        ingestion = self.ingest(buffered, window)

        partitions: Dict[Any, List[RawQueryRecord]] = defaultdict(list)
        key_of = PARTITION_KEYS[partition_by]
        for record in ingestion.records:
            partitions[key_of(record)].append(record)

        logger.debug(f"Aggregating {len(partitions)} {partition_by} partitions on {max_workers} workers")
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            partials = list(executor.map(lambda part: self._aggregate(part, window), partitions.values()))

        summaries = sort_summaries(summary for partial in partials for summary in partial)
        return self._result(ingestion, summaries, window, started)
