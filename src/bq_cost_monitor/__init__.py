"""BigQuery cost monitor: per-actor, per-day cost attribution of BigQuery query jobs."""

from bq_cost_monitor.config import EngineSettings, ProjectSettings, Settings, load_settings
from bq_cost_monitor.engine import CostAttributionPipeline, aggregate
from bq_cost_monitor.errors import (
    ConfigurationError,
    CostMonitorError,
    RecordSourceError,
    RecordValidationError,
    SinkError,
)
from bq_cost_monitor.models import DailyActorSummary, DateRange, RawQueryRecord, RunResult, summaries_to_json
from bq_cost_monitor.runner import MonitorRunner, ProjectRunOutcome
from bq_cost_monitor.version import __version__

__all__ = [
    "ConfigurationError",
    "CostAttributionPipeline",
    "CostMonitorError",
    "DailyActorSummary",
    "DateRange",
    "EngineSettings",
    "MonitorRunner",
    "ProjectRunOutcome",
    "ProjectSettings",
    "RawQueryRecord",
    "RecordSourceError",
    "RecordValidationError",
    "RunResult",
    "Settings",
    "SinkError",
    "__version__",
    "aggregate",
    "load_settings",
    "summaries_to_json",
]
