"""Job rows read from an exported JSON array or JSON Lines file."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from bq_cost_monitor.errors import RecordSourceError
from bq_cost_monitor.models import DateRange
from bq_cost_monitor.sources.base import RecordSource

logger = logging.getLogger(__name__)

JSON_LINES_SUFFIXES = (".jsonl", ".ndjson")


class JsonFileRecordSource(RecordSource):
    """
    Job rows exported to a file.

    ``*.jsonl`` / ``*.ndjson`` files hold one JSON object per line; any other
    file holds a JSON array, or an object with the rows under ``"jobs"``.
    Window filtering is left to ingestion.
    """

    def __init__(self, path: Union[str, Path], project_id: Optional[str] = None):
        super().__init__(project_id)
        self.path = Path(path)

    def fetch(self, window: DateRange) -> Iterator[Dict[str, Any]]:
        if not self.path.is_file():
            raise RecordSourceError(f"Job export file not found: {self.path}", self.project_id)

        if self.path.suffix.lower() in JSON_LINES_SUFFIXES:
            return self._read_lines()
        return iter(self._read_array())

    def _read_array(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RecordSourceError(f"Cannot read job export {self.path}: {e}", self.project_id) from e

        if isinstance(data, dict):
            data = data.get("jobs")
        if not isinstance(data, list):
            raise RecordSourceError(
                f"Job export {self.path} must contain a JSON array of job rows", self.project_id
            )
        logger.debug(f"Loaded {len(data)} job rows from {self.path}")
        return data

    def _read_lines(self) -> Iterator[Dict[str, Any]]:
        with open(self.path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    raise RecordSourceError(
                        f"Invalid JSON on line {line_number} of {self.path}: {e}", self.project_id
                    ) from e
