"""Summary sinks: where finished runs are written."""

from bq_cost_monitor.sinks.base import SummarySink, run_file_name, run_summary_file_name
from bq_cost_monitor.sinks.gcs_sink import GcsSummarySink
from bq_cost_monitor.sinks.json_sink import LocalJsonSink

__all__ = [
    "GcsSummarySink",
    "LocalJsonSink",
    "SummarySink",
    "run_file_name",
    "run_summary_file_name",
]
