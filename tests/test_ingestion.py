from datetime import date, datetime, timezone

import pytest

from bq_cost_monitor.engine.ingestion import RecordIngestor, parse_record
from bq_cost_monitor.errors import RecordValidationError
from bq_cost_monitor.models import DateRange, TableReference
from tests.fixtures.sample_jobs import PROJECT, at, table


class TestParseRecord:
    """Row validation and normalisation"""

    def test_information_schema_columns(self, make_row):
        row = make_row(
            total_bytes_processed=2048,
            total_bytes_billed=10_485_760,
            total_slot_ms=7200,
            cache_hit=True,
            statement_type="merge",
            referenced_tables=[table("sales", "orders")],
            destination_table=table("sales", "orders"),
            query="MERGE sales.orders ...",
        )

        record = parse_record(row)

        assert record.job_id == row["job_id"]
        assert record.timestamp == at()
        assert record.project_id == PROJECT
        assert record.actor_email == "analyst@example.com"
        assert record.bytes_processed == 2048
        assert record.bytes_billed == 10_485_760
        assert record.slot_milliseconds == 7200
        assert record.cache_hit is True
        assert record.statement_type == "MERGE"
        assert record.referenced_tables == (TableReference("sales", "orders", PROJECT),)
        assert record.destination_table == TableReference("sales", "orders", PROJECT)
        assert record.query_text == "MERGE sales.orders ..."

    def test_engine_field_names(self):
        record = parse_record({
            "job_id": "j1",
            "timestamp": "2024-03-15T10:00:00Z",
            "project_id": "p",
            "actor_email": "a@example.com",
            "bytes_processed": 5,
            "bytes_billed": 10,
            "referenced_tables": ["p.ds.t1", "ds.t2"],
        })

        assert record.timestamp == datetime(2024, 3, 15, 10, tzinfo=timezone.utc)
        assert [t.table_key for t in record.referenced_tables] == ["p.ds.t1", "ds.t2"]

    @pytest.mark.parametrize("value", [
        "2024-03-15 10:00:00 UTC",
        "2024-03-15T10:00:00+00:00",
        "2024-03-15T12:00:00+02:00",
        "2024-03-15T10:00:00",
        datetime(2024, 3, 15, 10, 0),
        1710496800,
    ])
    def test_timestamp_formats(self, make_row, value):
        record = parse_record(make_row(creation_time=value))

        assert record.timestamp == datetime(2024, 3, 15, 10, tzinfo=timezone.utc)

    def test_null_email_is_kept(self, make_row):
        record = parse_record(make_row(user_email=None))

        assert record.actor_email is None

    def test_error_result_marks_error(self, make_row):
        row = make_row()
        del row["has_error"]
        row["error_result"] = {"reason": "invalidQuery", "message": "Syntax error"}

        assert parse_record(row).has_error is True

    def test_duplicate_and_invalid_table_references(self, make_row):
        row = make_row(referenced_tables=[
            table("ds", "t"),
            table("ds", "t"),
            {"project_id": PROJECT, "dataset_id": "ds"},
            "not-a-table",
        ])

        assert [t.table_key for t in parse_record(row).referenced_tables] == [f"{PROJECT}.ds.t"]

    def test_default_project_id(self, make_row):
        row = make_row()
        del row["project_id"]

        assert parse_record(row, default_project_id="fallback").project_id == "fallback"

    def test_query_text_truncated(self, make_row):
        record = parse_record(make_row(query="x" * 50), max_text_length=10)

        assert record.query_text == "x" * 10

    @pytest.mark.parametrize("field,value,reason", [
        ("job_id", None, "missing_job_id"),
        ("creation_time", None, "missing_timestamp"),
        ("creation_time", "yesterday", "invalid_timestamp"),
        ("total_bytes_billed", None, "missing_bytes_billed"),
        ("total_bytes_processed", None, "missing_bytes_processed"),
        ("total_bytes_billed", -1, "negative_bytes_billed"),
        ("total_bytes_processed", "lots", "invalid_bytes_processed"),
        ("total_slot_ms", -5, "negative_slot_milliseconds"),
        ("creation_time", 1_710_496_800_000, "invalid_timestamp"),
        ("total_bytes_billed", float("inf"), "invalid_bytes_billed"),
        ("total_bytes_processed", float("nan"), "invalid_bytes_processed"),
        ("user_email", 42, "invalid_actor"),
        ("referenced_tables", 7, "invalid_referenced_tables"),
    ])
    def test_invalid_values(self, make_row, field, value, reason):
        with pytest.raises(RecordValidationError) as exc_info:
            parse_record(make_row(**{field: value}))

        assert exc_info.value.reason == reason

    def test_missing_actor_field(self, make_row):
        row = make_row()
        del row["user_email"]

        with pytest.raises(RecordValidationError) as exc_info:
            parse_record(row)

        assert exc_info.value.reason == "missing_actor"

    def test_missing_project_without_default(self, make_row):
        row = make_row()
        del row["project_id"]

        with pytest.raises(RecordValidationError) as exc_info:
            parse_record(row)

        assert exc_info.value.reason == "missing_project_id"

    @pytest.mark.parametrize("row", [None, 42, "job_0001", ["job_0001"]])
    def test_non_mapping_row(self, row):
        with pytest.raises(RecordValidationError) as exc_info:
            parse_record(row)

        assert exc_info.value.reason == "invalid_row"


class TestRecordIngestor:
    """Skip counting, de-duplication, exclusions and window filtering"""

    def test_counts_every_outcome(self, make_row, window):
        rows = [
            make_row(),
            make_row(total_bytes_billed=None),
            make_row(total_bytes_billed=-100),
            make_row(statement_type="SCRIPT"),
            make_row(creation_time=at(day=date(2024, 2, 1))),
        ]
        rows.append(dict(rows[0]))

        result = RecordIngestor().ingest(rows, window)

        assert result.records_read == 6
        assert len(result) == 1
        assert result.skipped_records == 3
        assert dict(result.skip_reasons) == {
            "missing_bytes_billed": 1,
            "negative_bytes_billed": 1,
            "duplicate_job_id": 1,
        }
        assert result.excluded_records == 1
        assert result.out_of_window == 1

    def test_skips_are_logged_once(self, make_row, caplog):
        rows = [make_row(total_bytes_billed=None), make_row(total_bytes_billed=None), make_row()]

        with caplog.at_level("WARNING", logger="bq_cost_monitor.engine.ingestion"):
            RecordIngestor().ingest(rows)

        warnings = [r for r in caplog.records if r.levelname == "WARNING"]
        assert len(warnings) == 1
        assert "Skipped 2 of 3 records" in warnings[0].getMessage()

    def test_window_is_inclusive(self, make_row):
        window = DateRange(date(2024, 3, 15), date(2024, 3, 16))
        rows = [
            make_row(creation_time=at(0, 0, day=date(2024, 3, 15))),
            make_row(creation_time=at(23, 59, day=date(2024, 3, 16))),
            make_row(creation_time=at(0, 0, day=date(2024, 3, 17))),
        ]

        result = RecordIngestor().ingest(rows, window)

        assert len(result) == 2
        assert result.out_of_window == 1

    def test_custom_excluded_statement_types(self, make_row):
        rows = [make_row(statement_type="script"), make_row(statement_type="CREATE_TABLE")]

        result = RecordIngestor(excluded_statement_types=["create_table"]).ingest(rows)

        assert [r.statement_type for r in result.records] == ["SCRIPT"]
        assert result.excluded_records == 1
