"""
Top-N rollup builders.

Rankings are stable: entries with exactly equal cost keep the order in which
they were first seen, and entries beyond N are dropped silently.
"""

from typing import Dict, Iterable, List, Optional, Set

from bq_cost_monitor.models import (
    DEFAULT_COST_PER_TERABYTE,
    DatasetCost,
    RawQueryRecord,
    RecentQuery,
    TableAttribution,
    TableCost,
    bytes_to_cost,
)

DEFAULT_TOP_N_DATASETS = 10
DEFAULT_TOP_N_TABLES = 100
DEFAULT_TOP_N_RECENT_QUERIES = 100


def _rank_by_cost(entries: Iterable, n: int) -> List:
    # sorted() is stable, so equal costs keep first-seen order
    return sorted(entries, key=lambda entry: -entry.cost_usd)[:n]


def top_tables(
    attributions: Iterable[TableAttribution],
    n: int = DEFAULT_TOP_N_TABLES,
    cost_per_terabyte: float = DEFAULT_COST_PER_TERABYTE,
) -> List[TableCost]:
    """Roll attributions up per table and keep the ``n`` most expensive."""
    tables: Dict[str, TableCost] = {}
    rebuild_bytes: Dict[str, float] = {}

    for attribution in attributions:
        entry = tables.get(attribution.table_key)
        if entry is None:
            entry = TableCost(table_key=attribution.table_key, dataset_key=attribution.dataset_key)
            tables[attribution.table_key] = entry
            rebuild_bytes[attribution.table_key] = 0.0

        entry.query_count += 1
        entry.bytes_processed += attribution.bytes_processed_share
        entry.bytes_billed += attribution.bytes_billed_share
        if attribution.is_rebuild:
            entry.rebuild_count += 1
            rebuild_bytes[attribution.table_key] += attribution.bytes_billed_share

    for table_key, entry in tables.items():
        entry.cost_usd = bytes_to_cost(entry.bytes_billed, cost_per_terabyte)
        entry.rebuild_cost_usd = bytes_to_cost(rebuild_bytes[table_key], cost_per_terabyte)
        entry.incremental_cost_usd = bytes_to_cost(entry.bytes_billed - rebuild_bytes[table_key], cost_per_terabyte)

    return _rank_by_cost(tables.values(), n)


def top_datasets(
    attributions: Iterable[TableAttribution],
    n: int = DEFAULT_TOP_N_DATASETS,
    cost_per_terabyte: float = DEFAULT_COST_PER_TERABYTE,
) -> List[DatasetCost]:
    """
    Roll table-level attributions up per dataset and keep the ``n`` most expensive.

    Datasets are derived from the table split, so a query reading two tables of
    one dataset contributes both halves to it but counts as one query.
    """
    datasets: Dict[str, DatasetCost] = {}
    jobs: Dict[str, Set[str]] = {}

    for attribution in attributions:
        entry = datasets.get(attribution.dataset_key)
        if entry is None:
            entry = DatasetCost(dataset_key=attribution.dataset_key)
            datasets[attribution.dataset_key] = entry
            jobs[attribution.dataset_key] = set()

        jobs[attribution.dataset_key].add(attribution.job_id)
        entry.bytes_processed += attribution.bytes_processed_share
        entry.bytes_billed += attribution.bytes_billed_share
        if attribution.is_rebuild:
            entry.rebuild_count += 1

    for dataset_key, entry in datasets.items():
        entry.query_count = len(jobs[dataset_key])
        entry.cost_usd = bytes_to_cost(entry.bytes_billed, cost_per_terabyte)

    return _rank_by_cost(datasets.values(), n)


def top_recent_queries(
    records: Iterable[RawQueryRecord],
    n: int = DEFAULT_TOP_N_RECENT_QUERIES,
    cost_per_terabyte: float = DEFAULT_COST_PER_TERABYTE,
    max_text_length: Optional[int] = None,
) -> List[RecentQuery]:
    """Most recent ``n`` queries, newest first; equal timestamps keep input order."""
    ordered = sorted(records, key=lambda record: record.timestamp, reverse=True)
    # reverse=True keeps stability for equal keys, same as sorting by the negated key
    return [RecentQuery.from_record(record, cost_per_terabyte, max_text_length) for record in ordered[:n]]
