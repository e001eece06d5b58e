"""Record sources: where raw job rows come from."""

from bq_cost_monitor.sources.base import IterableRecordSource, RecordSource
from bq_cost_monitor.sources.bigquery_source import BigQueryJobSource
from bq_cost_monitor.sources.file_source import JsonFileRecordSource

__all__ = [
    "BigQueryJobSource",
    "IterableRecordSource",
    "JsonFileRecordSource",
    "RecordSource",
]
