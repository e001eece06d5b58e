"""Base class and file naming shared by the summary sinks."""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bq_cost_monitor.models import RunResult

RUN_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


def run_file_name(project_id: str, generated_at: datetime) -> str:
    """``<project>_costs_<YYYY-MM-DD_HH-MM-SS>.json``"""
    stamp = generated_at.astimezone(timezone.utc).strftime(RUN_TIMESTAMP_FORMAT)
    return f"{project_id}_costs_{stamp}.json"


def run_summary_file_name(moment: Optional[datetime] = None) -> str:
    """``summary_<YYYY-MM-DD>.json``"""
    moment = moment or datetime.now(timezone.utc)
    return f"summary_{moment.astimezone(timezone.utc).date().isoformat()}.json"


class SummarySink(ABC):
    """Persists finished runs. Implementations raise SinkError on failure."""

    @abstractmethod
    def write_run(self, project_id: str, result: RunResult) -> str:
        """Write one project's run and return where it went."""

    @abstractmethod
    def write_run_summary(self, outcomes: List[Dict[str, Any]], moment: Optional[datetime] = None) -> str:
        """Write the per-project outcome list of a multi-project run and return where it went."""

    @staticmethod
    def serialize(payload: Any) -> str:
        return json.dumps(payload, indent=2)
