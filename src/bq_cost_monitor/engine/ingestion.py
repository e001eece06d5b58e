"""
Record ingestion: raw job rows to validated RawQueryRecord objects.

Rows are plain mappings. Both the engine's own field names and the
INFORMATION_SCHEMA.JOBS column names are accepted (``user_email``,
``creation_time``, ``total_bytes_billed``, ``error_result`` ...).
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from bq_cost_monitor.errors import RecordValidationError
from bq_cost_monitor.models import DateRange, RawQueryRecord, TableReference, as_utc

logger = logging.getLogger(__name__)

_MISSING = object()

FIELD_ALIASES = {
    "job_id": ("job_id",),
    "timestamp": ("timestamp", "creation_time"),
    "project_id": ("project_id",),
    "actor_email": ("actor_email", "user_email"),
    "bytes_processed": ("bytes_processed", "total_bytes_processed"),
    "bytes_billed": ("bytes_billed", "total_bytes_billed"),
    "slot_milliseconds": ("slot_milliseconds", "total_slot_ms"),
    "cache_hit": ("cache_hit",),
    "statement_type": ("statement_type",),
    "priority": ("priority",),
    "destination_table": ("destination_table",),
    "referenced_tables": ("referenced_tables",),
    "query_text": ("query_text", "query"),
}


def _lookup(row: Mapping[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if alias in row:
            return row[alias]
    return _MISSING


def _parse_timestamp(value: Any, job_id: Optional[str]) -> datetime:
    if value is _MISSING or value is None or value == "":
        raise RecordValidationError("missing_timestamp", "Record has no timestamp", job_id)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            raise RecordValidationError("invalid_timestamp", f"Epoch timestamp out of range: {value!r}", job_id)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(" UTC"):
            text = text[:-4] + "+00:00"
        elif text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise RecordValidationError("invalid_timestamp", f"Unparseable timestamp {value!r}", job_id)
    else:
        raise RecordValidationError("invalid_timestamp", f"Unsupported timestamp {value!r}", job_id)

    return as_utc(parsed)


def _parse_count(value: Any, name: str, job_id: Optional[str], required: bool) -> int:
    if value is _MISSING or value is None:
        if required:
            raise RecordValidationError(f"missing_{name}", f"Record has no {name}", job_id)
        return 0

    if isinstance(value, bool):
        raise RecordValidationError(f"invalid_{name}", f"{name} must be a number", job_id)
    try:
        number = int(value) if not isinstance(value, float) else int(round(value))
    except (TypeError, ValueError, OverflowError):
        raise RecordValidationError(f"invalid_{name}", f"{name} is not numeric: {value!r}", job_id)

    if number < 0:
        raise RecordValidationError(f"negative_{name}", f"{name} must not be negative ({number})", job_id)
    return number


def _parse_flag(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _parse_has_error(row: Mapping[str, Any]) -> bool:
    if "has_error" in row:
        return _parse_flag(row["has_error"])
    error_result = row.get("error_result")
    return bool(error_result)


def _parse_referenced_tables(value: Any, job_id: Optional[str]) -> Tuple[TableReference, ...]:
    if value is _MISSING or value is None:
        return ()
    if isinstance(value, (str, Mapping)):
        value = [value]
    elif not isinstance(value, (list, tuple)):
        raise RecordValidationError(
            "invalid_referenced_tables", f"referenced_tables must be a list, got {type(value).__name__}", job_id
        )

    tables: List[TableReference] = []
    seen = set()
    for entry in value:
        try:
            reference = TableReference.parse(entry)
        except ValueError as e:
            logger.debug(f"Ignoring referenced table on job {job_id}: {e}")
            continue
        if reference.table_key in seen:
            continue
        seen.add(reference.table_key)
        tables.append(reference)
    return tuple(tables)


def _parse_destination(value: Any, job_id: Optional[str]) -> Optional[TableReference]:
    if value is _MISSING or not value:
        return None
    try:
        return TableReference.parse(value)
    except ValueError as e:
        logger.debug(f"Ignoring destination table on job {job_id}: {e}")
        return None


def parse_record(
    row: Mapping[str, Any],
    default_project_id: Optional[str] = None,
    max_text_length: Optional[int] = None,
) -> RawQueryRecord:
    """
    Validate one raw row.

    Args:
        row: Mapping with job fields
        default_project_id: Used when the row carries no project_id
        max_text_length: Truncate query text to this many characters

    Raises:
        RecordValidationError: when a required field is missing or invalid
    """
    if not isinstance(row, Mapping):
        raise RecordValidationError("invalid_row", f"Job row must be a mapping, got {type(row).__name__}")

    job_id = _lookup(row, "job_id")
    if job_id is _MISSING or not job_id:
        raise RecordValidationError("missing_job_id", "Record has no job_id")
    job_id = str(job_id)

    timestamp = _parse_timestamp(_lookup(row, "timestamp"), job_id)

    actor_email = _lookup(row, "actor_email")
    if actor_email is _MISSING:
        raise RecordValidationError("missing_actor", "Record has no actor identity field", job_id)
    if actor_email is not None and not isinstance(actor_email, str):
        raise RecordValidationError("invalid_actor", f"Actor must be a string, got {type(actor_email).__name__}", job_id)

    project_id = _lookup(row, "project_id")
    if project_id is _MISSING or not project_id:
        project_id = default_project_id
    if not project_id:
        raise RecordValidationError("missing_project_id", "Record has no project_id", job_id)

    query_text = _lookup(row, "query_text")
    query_text = "" if query_text is _MISSING or query_text is None else str(query_text)
    if max_text_length is not None and len(query_text) > max_text_length:
        query_text = query_text[:max_text_length]

    statement_type = _lookup(row, "statement_type")
    priority = _lookup(row, "priority")

    return RawQueryRecord(
        job_id=job_id,
        timestamp=timestamp,
        project_id=str(project_id),
        actor_email=actor_email or None,
        bytes_processed=_parse_count(_lookup(row, "bytes_processed"), "bytes_processed", job_id, True),
        bytes_billed=_parse_count(_lookup(row, "bytes_billed"), "bytes_billed", job_id, True),
        statement_type=str(statement_type).upper() if statement_type not in (_MISSING, None) else "UNKNOWN",
        priority=str(priority).upper() if priority not in (_MISSING, None) else "INTERACTIVE",
        slot_milliseconds=_parse_count(_lookup(row, "slot_milliseconds"), "slot_milliseconds", job_id, False),
        cache_hit=_parse_flag(_lookup(row, "cache_hit")),
        has_error=_parse_has_error(row),
        destination_table=_parse_destination(_lookup(row, "destination_table"), job_id),
        referenced_tables=_parse_referenced_tables(_lookup(row, "referenced_tables"), job_id),
        query_text=query_text,
    )


@dataclass
class IngestionResult:
    """Valid records plus counts of everything that was left out."""
    records: List[RawQueryRecord] = field(default_factory=list)
    records_read: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    out_of_window: int = 0
    excluded_records: int = 0

    @property
    def skipped_records(self) -> int:
        return sum(self.skip_reasons.values())

    def __len__(self) -> int:
        return len(self.records)


class RecordIngestor:
    """Turns a row stream into the windowed, de-duplicated record set for one run."""

    def __init__(
        self,
        default_project_id: Optional[str] = None,
        max_text_length: Optional[int] = None,
        excluded_statement_types: Sequence[str] = ("SCRIPT",),
    ):
        self.default_project_id = default_project_id
        self.max_text_length = max_text_length
        self.excluded_statement_types = {s.upper() for s in excluded_statement_types}

    def ingest(self, rows: Iterable[Mapping[str, Any]], window: Optional[DateRange] = None) -> IngestionResult:
        result = IngestionResult()
        seen_job_ids = set()

        for row in rows:
            result.records_read += 1
            try:
                record = parse_record(row, self.default_project_id, self.max_text_length)
            except RecordValidationError as e:
                result.skip_reasons[e.reason] += 1
                logger.debug(f"Skipping malformed record: {e}")
                continue

            if record.job_id in seen_job_ids:
                result.skip_reasons["duplicate_job_id"] += 1
                logger.debug(f"Skipping duplicate job {record.job_id}")
                continue
            seen_job_ids.add(record.job_id)

            if record.statement_type in self.excluded_statement_types:
                result.excluded_records += 1
                continue

            if window is not None and not window.contains(record.timestamp):
                result.out_of_window += 1
                continue

            result.records.append(record)

        if result.skipped_records:
            logger.warning(
                f"Skipped {result.skipped_records} of {result.records_read} records: "
                f"{dict(sorted(result.skip_reasons.items()))}"
            )
        return result
