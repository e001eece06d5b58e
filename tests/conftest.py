"""Shared fixtures: raw job rows and validated records."""

import pytest

from bq_cost_monitor.config.settings import EngineSettings
from bq_cost_monitor.models import DateRange, RawQueryRecord, TableReference
from tests.fixtures.sample_jobs import ANALYST, PROJECT, TIB, WINDOW_END, WINDOW_START, at, table


@pytest.fixture
def window():
    return DateRange(WINDOW_START, WINDOW_END)


@pytest.fixture
def make_row():
    """Factory for raw job rows in INFORMATION_SCHEMA.JOBS shape."""
    counter = {"n": 0}

    def _make_row(**overrides):
        counter["n"] += 1
        row = {
            "job_id": f"job_{counter['n']:04d}",
            "creation_time": at(),
            "project_id": PROJECT,
            "user_email": ANALYST,
            "statement_type": "SELECT",
            "priority": "INTERACTIVE",
            "query": "SELECT 1",
            "total_bytes_processed": 0,
            "total_bytes_billed": 0,
            "total_slot_ms": 0,
            "cache_hit": False,
            "has_error": False,
            "destination_table": None,
            "referenced_tables": [],
        }
        row.update(overrides)
        return row

    return _make_row


@pytest.fixture
def make_record():
    """Factory for validated RawQueryRecord objects."""
    counter = {"n": 0}

    def _make_record(**overrides):
        counter["n"] += 1
        fields = {
            "job_id": f"rec_{counter['n']:04d}",
            "timestamp": at(),
            "project_id": PROJECT,
            "actor_email": ANALYST,
            "bytes_processed": 0,
            "bytes_billed": 0,
        }
        if "referenced_tables" in overrides:
            overrides["referenced_tables"] = tuple(TableReference.parse(t) for t in overrides["referenced_tables"])
        if overrides.get("destination_table") is not None:
            overrides["destination_table"] = TableReference.parse(overrides["destination_table"])
        fields.update(overrides)
        return RawQueryRecord(**fields)

    return _make_record


@pytest.fixture
def engine_settings():
    return EngineSettings()


@pytest.fixture
def scenario_rows(make_row):
    """Three jobs by one analyst on one day: 1 TiB over two tables, a cache hit, 0.5 TiB over one table."""
    table_a = table("dataset_a", "table_a")
    table_b = table("dataset_b", "table_b")
    return [
        make_row(
            total_bytes_processed=TIB,
            total_bytes_billed=TIB,
            referenced_tables=[table_a, table_b],
            destination_table=table_a,
            statement_type="MERGE",
            creation_time=at(9),
        ),
        make_row(cache_hit=True, creation_time=at(10)),
        make_row(
            total_bytes_processed=TIB // 2,
            total_bytes_billed=TIB // 2,
            referenced_tables=[table_a],
            creation_time=at(14),
        ),
    ]
