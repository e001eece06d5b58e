from datetime import date

import pytest

from bq_cost_monitor.config.settings import build_engine_settings
from bq_cost_monitor.engine.pipeline import CostAttributionPipeline
from bq_cost_monitor.errors import RecordSourceError
from bq_cost_monitor.models import DateRange, summaries_to_json
from bq_cost_monitor.sources import IterableRecordSource
from tests.fixtures.sample_jobs import ANALYST, ETL_ACCOUNT, PROJECT, TIB, at, table


@pytest.fixture
def pipeline():
    return CostAttributionPipeline(project_id=PROJECT)


class TestEndToEndScenario:
    """Three jobs by one analyst: 1 TiB over two tables, a cache hit, 0.5 TiB over one table"""

    def test_summary_totals(self, pipeline, scenario_rows, window):
        result = pipeline.run(scenario_rows, window=window)

        assert len(result.summaries) == 1
        summary = result.summaries[0]
        assert summary.date == date(2024, 3, 15)
        assert summary.project_id == PROJECT
        assert summary.actor == ANALYST
        assert not summary.is_service_account
        assert summary.query_count == 3
        assert summary.total_bytes_billed == 1_649_267_441_664
        assert summary.to_dict()["estimated_cost_usd"] == 7.50
        assert summary.to_dict()["cache_hit_percentage"] == 33.33

    def test_dataset_rollups(self, pipeline, scenario_rows, window):
        summary = pipeline.run(scenario_rows, window=window).summaries[0]

        datasets = {d.dataset_key: d.to_dict() for d in summary.dataset_costs}
        assert datasets[f"{PROJECT}.dataset_a"]["cost_usd"] == 5.00
        assert datasets[f"{PROJECT}.dataset_a"]["query_count"] == 2
        assert datasets[f"{PROJECT}.dataset_b"]["cost_usd"] == 2.50
        assert [d.dataset_key for d in summary.dataset_costs] == [f"{PROJECT}.dataset_a", f"{PROJECT}.dataset_b"]

    def test_table_rollups(self, pipeline, scenario_rows, window):
        summary = pipeline.run(scenario_rows, window=window).summaries[0]

        table_a, table_b = summary.table_costs
        assert table_a.table_key == f"{PROJECT}.dataset_a.table_a"
        assert table_a.is_rebuild
        assert table_a.rebuild_count == 1
        assert table_a.to_dict()["rebuild_cost_usd"] == 2.50
        assert table_a.to_dict()["incremental_cost_usd"] == 2.50
        assert table_b.table_key == f"{PROJECT}.dataset_b.table_b"
        assert not table_b.is_rebuild

    def test_breakdowns_and_recent_queries(self, pipeline, scenario_rows, window):
        summary = pipeline.run(scenario_rows, window=window).summaries[0]

        assert [h.hour_of_day for h in summary.hourly_breakdown] == [9, 10, 14]
        assert [(w.day_name, w.query_count) for w in summary.weekday_breakdown] == [("Friday", 3)]
        assert [q.job_id for q in summary.recent_queries] == [
            scenario_rows[2]["job_id"], scenario_rows[1]["job_id"], scenario_rows[0]["job_id"],
        ]

    def test_idempotent_output(self, pipeline, scenario_rows, window):
        first = pipeline.run(scenario_rows, window=window)
        second = pipeline.run(list(scenario_rows), window=window)

        assert summaries_to_json(first.summaries) == summaries_to_json(second.summaries)


class TestRunMetadata:

    def test_skipped_records_are_reported(self, pipeline, make_row, window):
        rows = [
            make_row(total_bytes_billed=TIB),
            make_row(total_bytes_billed=None),
            make_row(creation_time=None),
            make_row(statement_type="SCRIPT", total_bytes_billed=TIB),
        ]

        result = pipeline.run(rows, window=window)

        assert result.records_read == 4
        assert result.records_valid == 1
        assert result.skipped_records == 2
        assert result.excluded_records == 1
        assert result.data_available
        metadata = result.metadata()
        assert metadata["skip_reasons"] == {"missing_bytes_billed": 1, "missing_timestamp": 1}
        assert metadata["total_cost_usd"] == 5.0
        assert metadata["window"] == {"start_date": "2024-03-01", "end_date": "2024-03-31"}

    @pytest.mark.parametrize("bad_row,reason", [
        (None, "invalid_row"),
        (42, "invalid_row"),
        ({"creation_time": 1_710_496_800_000}, "invalid_timestamp"),
        ({"total_bytes_billed": float("inf")}, "invalid_bytes_billed"),
        ({"user_email": 42}, "invalid_actor"),
        ({"referenced_tables": 7}, "invalid_referenced_tables"),
    ])
    def test_malformed_row_is_skipped(self, pipeline, make_row, window, bad_row, reason):
        if isinstance(bad_row, dict):
            bad_row = make_row(**bad_row)
        rows = [make_row(total_bytes_billed=TIB), bad_row]

        result = pipeline.run(rows, window=window)

        assert result.records_valid == 1
        assert result.skipped_records == 1
        assert result.metadata()["skip_reasons"] == {reason: 1}
        assert result.summaries[0].estimated_cost_usd == 5.0

    def test_empty_source_is_not_an_error(self, pipeline, window):
        result = pipeline.run([], window=window)

        assert result.summaries == []
        assert not result.data_available
        assert result.to_dict()["metadata"]["summary_count"] == 0

    def test_default_window(self, make_row):
        pipeline = CostAttributionPipeline(build_engine_settings(history_window_days=7))
        rows = [
            make_row(creation_time=at(day=date(2024, 3, 13))),
            make_row(creation_time=at(day=date(2024, 3, 1))),
        ]

        result = pipeline.run(rows, today=date(2024, 3, 15))

        assert result.window == DateRange(date(2024, 3, 8), date(2024, 3, 15))
        assert result.records_valid == 1
        assert result.out_of_window == 1

    def test_cost_per_terabyte_setting(self, scenario_rows, window):
        pipeline = CostAttributionPipeline(build_engine_settings(cost_per_terabyte=6.25))

        summary = pipeline.run(scenario_rows, window=window).summaries[0]

        assert summary.to_dict()["estimated_cost_usd"] == 9.38


class TestSourceFailures:
    """A source failing mid-stream aborts the run with no partial output"""

    def test_failing_iterator(self, pipeline, make_row, window):
        def rows():
            yield make_row(total_bytes_billed=TIB)
            raise ConnectionError("connection reset by peer")

        with pytest.raises(RecordSourceError) as exc_info:
            pipeline.run(rows(), window=window)

        assert exc_info.value.project_id == PROJECT
        assert "connection reset by peer" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_failing_fetch(self, pipeline, window):
        class BrokenSource(IterableRecordSource):
            def fetch(self, window):
                raise PermissionError("Access Denied: INFORMATION_SCHEMA.JOBS")

        with pytest.raises(RecordSourceError, match="Access Denied"):
            pipeline.run_source(BrokenSource([]), window=window)

    def test_run_source(self, pipeline, scenario_rows, window):
        result = pipeline.run_source(IterableRecordSource(scenario_rows, PROJECT), window=window)

        assert result.total_queries == 3


class TestPartitionedRun:
    """Partitioned aggregation matches the single-pass run"""

    @pytest.fixture
    def mixed_rows(self, make_row):
        rows = []
        for day in (date(2024, 3, 14), date(2024, 3, 15), date(2024, 3, 16)):
            for project in (PROJECT, "analytics-eu"):
                for actor in (ANALYST, ETL_ACCOUNT, "reviewer@example.com"):
                    rows.append(make_row(
                        creation_time=at(11, day=day),
                        project_id=project,
                        user_email=actor,
                        total_bytes_billed=TIB // 4,
                        total_bytes_processed=TIB // 4,
                        referenced_tables=[table("sales", "orders", project), table("hr", "staff", project)],
                    ))
        return rows

    @pytest.mark.parametrize("partition_by", ["date", "project"])
    def test_same_output_as_run(self, pipeline, mixed_rows, window, partition_by):
        expected = pipeline.run(mixed_rows, window=window)
        partitioned = pipeline.run_partitioned(mixed_rows, partition_by=partition_by, max_workers=3, window=window)

        assert summaries_to_json(partitioned.summaries) == summaries_to_json(expected.summaries)
        assert partitioned.records_valid == expected.records_valid == 18

    def test_unknown_partition_key(self, pipeline, window):
        with pytest.raises(ValueError, match="partition_by"):
            pipeline.run_partitioned([], partition_by="actor", window=window)
