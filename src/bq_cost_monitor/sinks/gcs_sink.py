"""Cloud Storage sink."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud import storage

from bq_cost_monitor.errors import SinkError
from bq_cost_monitor.models import RunResult
from bq_cost_monitor.retry import TRANSIENT_RETRY
from bq_cost_monitor.sinks.base import SummarySink, run_file_name, run_summary_file_name

logger = logging.getLogger(__name__)

METADATA_SOURCE = "bq-cost-monitor"


class GcsSummarySink(SummarySink):
    """Uploads runs as JSON objects under ``gs://<bucket>/<prefix>``."""

    def __init__(self, bucket_name: str, prefix: str = "results/", client: Optional[storage.Client] = None):
        if not bucket_name:
            raise ValueError("bucket_name is required for GcsSummarySink")
        self.bucket_name = bucket_name
        self.prefix = prefix if not prefix or prefix.endswith("/") else f"{prefix}/"
        self.client = client or storage.Client()

    def _upload(self, file_name: str, content: str, project_id: Optional[str] = None) -> str:
        blob_name = f"{self.prefix}{file_name}"
        uri = f"gs://{self.bucket_name}/{blob_name}"
        try:
            bucket = self.client.bucket(self.bucket_name)
            blob = bucket.blob(blob_name)
            metadata = {
                "source": METADATA_SOURCE,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            if project_id:
                metadata["projectId"] = project_id
            blob.metadata = metadata

            @TRANSIENT_RETRY
            def _upload():
                blob.upload_from_string(content, content_type="application/json")

            _upload()
        except Exception as e:
            logger.error(f"Failed to upload to {uri}: {e}", exc_info=True)
            raise SinkError(f"Failed to upload to {uri}: {e}") from e

        logger.info(f"Uploaded JSON to {uri}")
        return uri

    def write_run(self, project_id: str, result: RunResult) -> str:
        return self._upload(
            run_file_name(project_id, result.generated_at),
            self.serialize(result.to_dict()),
            project_id,
        )

    def write_run_summary(self, outcomes: List[Dict[str, Any]], moment: Optional[datetime] = None) -> str:
        return self._upload(run_summary_file_name(moment), self.serialize(outcomes))
