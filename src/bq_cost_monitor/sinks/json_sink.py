"""Local directory sink."""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from bq_cost_monitor.errors import SinkError
from bq_cost_monitor.models import RunResult
from bq_cost_monitor.sinks.base import SummarySink, run_file_name, run_summary_file_name

logger = logging.getLogger(__name__)


class LocalJsonSink(SummarySink):
    """Writes runs as pretty-printed JSON files under ``output_dir``."""

    def __init__(self, output_dir: Union[str, Path] = "output"):
        self.output_dir = Path(output_dir)

    def _write_atomic(self, file_name: str, content: str) -> str:
        # Readers see either the previous file or the complete new one.
        path = self.output_dir / file_name
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.output_dir, prefix=f".{file_name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise SinkError(f"Failed to write {path}: {e}") from e

        logger.info(f"Saved {path}")
        return str(path)

    def write_run(self, project_id: str, result: RunResult) -> str:
        return self._write_atomic(run_file_name(project_id, result.generated_at), self.serialize(result.to_dict()))

    def write_run_summary(self, outcomes: List[Dict[str, Any]], moment: Optional[datetime] = None) -> str:
        return self._write_atomic(run_summary_file_name(moment), self.serialize(outcomes))
