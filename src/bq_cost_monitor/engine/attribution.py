"""
Proportional byte attribution.

A query touching N tables attributes 1/N of its processed and billed bytes
to each of them. The source data has no per-table byte counts.
"""

from typing import Dict, Iterable, List

from bq_cost_monitor.models import RawQueryRecord, TableAttribution


def attribute(record: RawQueryRecord, match_project: bool = False) -> List[TableAttribution]:
    """
    Split one record's bytes across its referenced tables.

    Args:
        record: The executed query
        match_project: Also require the project to match when flagging rebuilds

    Returns:
        One attribution per referenced table, in ``referenced_tables`` order;
        empty when the record references no tables
    """
    tables = record.referenced_tables
    if not tables:
        return []

    count = len(tables)
    processed_share = record.bytes_processed / count
    billed_share = record.bytes_billed / count
    destination = record.destination_table

    return [
        TableAttribution(
            job_id=record.job_id,
            table_key=table.table_key,
            dataset_key=table.dataset_key,
            bytes_processed_share=processed_share,
            bytes_billed_share=billed_share,
            is_rebuild=destination is not None and destination.same_table(table, match_project),
        )
        for table in tables
    ]


def attribute_all(records: Iterable[RawQueryRecord], match_project: bool = False) -> Dict[str, List[TableAttribution]]:
    """Attribute every record, keyed by job_id. Records without tables map to an empty list."""
    return {record.job_id: attribute(record, match_project) for record in records}
