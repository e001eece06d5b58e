"""Base class for record sources."""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Mapping, Optional

from bq_cost_monitor.models import DateRange


class RecordSource(ABC):
    """
    Produces raw job rows for one project.

    ``fetch`` may return a lazy iterator. Errors raised while opening the
    source or while iterating it are reported by the pipeline as
    RecordSourceError and abort the run.
    """

    def __init__(self, project_id: Optional[str] = None):
        self.project_id = project_id

    @abstractmethod
    def fetch(self, window: DateRange) -> Iterable[Mapping[str, Any]]:
        """Return the raw rows that may fall inside ``window``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(project_id={self.project_id!r})"


class IterableRecordSource(RecordSource):
    """Rows already held in memory. Window filtering is left to ingestion."""

    def __init__(self, rows: Iterable[Mapping[str, Any]], project_id: Optional[str] = None):
        super().__init__(project_id)
        self.rows = rows

    def fetch(self, window: DateRange) -> Iterator[Mapping[str, Any]]:
        return iter(self.rows)
