#!/usr/bin/env python3
"""
Data model for the cost-attribution engine.

Raw job records come in, DailyActorSummary records go out. Monetary values
are accumulated unrounded and only rounded to cents in ``to_dict()``.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

BYTES_PER_TEBIBYTE = 1024 ** 4
DEFAULT_COST_PER_TERABYTE = 5.0

DAY_NAMES = {
    1: "Sunday",
    2: "Monday",
    3: "Tuesday",
    4: "Wednesday",
    5: "Thursday",
    6: "Friday",
    7: "Saturday",
}


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def round_half_up(value: float, places: int = 2) -> float:
    """Round like BigQuery's ROUND(): halves go away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_usd(value: float) -> float:
    return round_half_up(value, 2)


def round_bytes(value: float) -> int:
    return int(Decimal(repr(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def bytes_to_cost(bytes_billed: float, cost_per_terabyte: float) -> float:
    """Convert billed bytes into USD at ``cost_per_terabyte`` per TiB."""
    return bytes_billed / BYTES_PER_TEBIBYTE * cost_per_terabyte


def bigquery_day_of_week(moment: Union[date, datetime]) -> int:
    """Day of week in BigQuery DAYOFWEEK numbering (1 = Sunday ... 7 = Saturday)."""
    return moment.isoweekday() % 7 + 1


# ============================================================================
# INPUT SHAPES
# ============================================================================

@dataclass(frozen=True)
class TableReference:
    """A BigQuery table reference. ``project_id`` may be unknown."""
    dataset_id: str
    table_id: str
    project_id: Optional[str] = None

    @property
    def dataset_key(self) -> str:
        if self.project_id:
            return f"{self.project_id}.{self.dataset_id}"
        return self.dataset_id

    @property
    def table_key(self) -> str:
        return f"{self.dataset_key}.{self.table_id}"

    def same_table(self, other: "TableReference", match_project: bool = False) -> bool:
        """Dataset+table equality, optionally also requiring the same project."""
        if self.dataset_id != other.dataset_id or self.table_id != other.table_id:
            return False
        if match_project:
            return self.project_id == other.project_id
        return True

    @classmethod
    def parse(cls, value: Union[str, Mapping[str, Any], "TableReference"]) -> "TableReference":
        """
        Build a reference from a ``project.dataset.table`` string (``project:dataset.table``
        is accepted too) or from a mapping as returned by INFORMATION_SCHEMA.

        Raises:
            ValueError: if the dataset or table part is missing
        """
        if isinstance(value, TableReference):
            return value

        if isinstance(value, str):
            text = value.strip().strip("`").replace(":", ".", 1)
            parts = [p for p in text.split(".") if p]
            if len(parts) == 3:
                return cls(project_id=parts[0], dataset_id=parts[1], table_id=parts[2])
            if len(parts) == 2:
                return cls(dataset_id=parts[0], table_id=parts[1])
            raise ValueError(f"Cannot parse table reference: {value!r}")

        if isinstance(value, Mapping):
            project_id = value.get("project_id") or value.get("projectId")
            dataset_id = value.get("dataset_id") or value.get("datasetId")
            table_id = value.get("table_id") or value.get("tableId")
            if not dataset_id or not table_id:
                raise ValueError(f"Table reference is missing dataset or table: {dict(value)!r}")
            return cls(project_id=project_id or None, dataset_id=dataset_id, table_id=table_id)

        raise ValueError(f"Unsupported table reference type: {type(value).__name__}")

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "project_id": self.project_id,
            "dataset_id": self.dataset_id,
            "table_id": self.table_id,
        }


@dataclass(frozen=True)
class RawQueryRecord:
    """One executed query job."""
    job_id: str
    timestamp: datetime
    project_id: str
    actor_email: Optional[str]
    bytes_processed: int
    bytes_billed: int
    statement_type: str = "SELECT"
    priority: str = "INTERACTIVE"
    slot_milliseconds: int = 0
    cache_hit: bool = False
    has_error: bool = False
    destination_table: Optional[TableReference] = None
    referenced_tables: Tuple[TableReference, ...] = ()
    query_text: str = ""

    def __post_init__(self):
        # Naive timestamps are UTC, never host-local
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    @property
    def date(self) -> date:
        return self.timestamp.date()

    @property
    def hour_of_day(self) -> int:
        return self.timestamp.hour

    @property
    def day_of_week(self) -> int:
        return bigquery_day_of_week(self.timestamp)


class ActorKind(Enum):
    """Whether the actor behind a job is a person or a service account."""
    USER = "user"
    SERVICE_ACCOUNT = "service_account"


@dataclass(frozen=True)
class ActorIdentity:
    canonical_key: str
    kind: ActorKind

    @property
    def is_service_account(self) -> bool:
        return self.kind is ActorKind.SERVICE_ACCOUNT


@dataclass(frozen=True)
class TableAttribution:
    """The share of one record's bytes attributed to one referenced table."""
    job_id: str
    table_key: str
    dataset_key: str
    bytes_processed_share: float
    bytes_billed_share: float
    is_rebuild: bool = False


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of UTC calendar dates."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    @classmethod
    def last_n_days(cls, days: int, today: Optional[date] = None) -> "DateRange":
        """Window covering ``creation_time >= now - days``, i.e. ``days`` full days plus today."""
        if days < 1:
            raise ValueError("days must be at least 1")
        today = today or datetime.now(timezone.utc).date()
        return cls(start=today - timedelta(days=days), end=today)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, moment: Union[date, datetime]) -> bool:
        if isinstance(moment, datetime):
            moment = as_utc(moment).date()
        return self.start <= moment <= self.end

    def to_dict(self) -> Dict[str, str]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


class SummaryKey(NamedTuple):
    """Grouping key of a DailyActorSummary."""
    date: date
    project_id: str
    actor: str
    is_service_account: bool


# ============================================================================
# ROLLUP SHAPES
# ============================================================================

@dataclass
class DailyTotals:
    """Scalar rollups for one actor-day, accumulated record by record."""
    query_count: int = 0
    cache_hit_count: int = 0
    error_count: int = 0
    total_bytes_processed: int = 0
    total_bytes_billed: int = 0
    slot_milliseconds: int = 0
    cost_per_terabyte: float = DEFAULT_COST_PER_TERABYTE

    def add(self, record: RawQueryRecord) -> None:
        self.query_count += 1
        self.cache_hit_count += 1 if record.cache_hit else 0
        self.error_count += 1 if record.has_error else 0
        self.total_bytes_processed += record.bytes_processed
        self.total_bytes_billed += record.bytes_billed
        self.slot_milliseconds += record.slot_milliseconds

    @property
    def estimated_cost_usd(self) -> float:
        return bytes_to_cost(self.total_bytes_billed, self.cost_per_terabyte)

    @property
    def slot_hours(self) -> float:
        return self.slot_milliseconds / 1000 / 3600

    @property
    def cache_hit_percentage(self) -> float:
        # Weighted by query volume; an empty bucket reports 0.
        if self.query_count == 0:
            return 0.0
        return self.cache_hit_count / self.query_count * 100


@dataclass
class DatasetCost:
    dataset_key: str
    query_count: int = 0
    bytes_processed: float = 0.0
    bytes_billed: float = 0.0
    cost_usd: float = 0.0
    rebuild_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset_key": self.dataset_key,
            "query_count": self.query_count,
            "bytes_processed": round_bytes(self.bytes_processed),
            "bytes_billed": round_bytes(self.bytes_billed),
            "cost_usd": round_usd(self.cost_usd),
            "rebuild_count": self.rebuild_count,
        }


@dataclass
class TableCost:
    table_key: str
    dataset_key: str
    query_count: int = 0
    bytes_processed: float = 0.0
    bytes_billed: float = 0.0
    cost_usd: float = 0.0
    rebuild_cost_usd: float = 0.0
    incremental_cost_usd: float = 0.0
    rebuild_count: int = 0

    @property
    def is_rebuild(self) -> bool:
        return self.rebuild_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_key": self.table_key,
            "dataset_key": self.dataset_key,
            "query_count": self.query_count,
            "bytes_processed": round_bytes(self.bytes_processed),
            "bytes_billed": round_bytes(self.bytes_billed),
            "cost_usd": round_usd(self.cost_usd),
            "is_rebuild": self.is_rebuild,
            "rebuild_cost_usd": round_usd(self.rebuild_cost_usd),
            "incremental_cost_usd": round_usd(self.incremental_cost_usd),
            "rebuild_count": self.rebuild_count,
        }


@dataclass
class HourlyBucket:
    hour_of_day: int
    query_count: int = 0
    bytes_billed: int = 0
    cost_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour_of_day": self.hour_of_day,
            "query_count": self.query_count,
            "bytes_billed": self.bytes_billed,
            "cost_usd": round_usd(self.cost_usd),
        }


@dataclass
class WeekdayBucket:
    day_of_week: int
    query_count: int = 0
    bytes_billed: int = 0
    cost_usd: float = 0.0

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day_of_week": self.day_of_week,
            "day_name": self.day_name,
            "query_count": self.query_count,
            "bytes_billed": self.bytes_billed,
            "cost_usd": round_usd(self.cost_usd),
        }


@dataclass(frozen=True)
class RecentQuery:
    """Per-query detail kept for the most recent jobs of an actor-day."""
    job_id: str
    timestamp: datetime
    statement_type: str
    priority: str
    query_text: str
    total_bytes_processed: int
    total_bytes_billed: int
    query_cost_usd: float
    slot_milliseconds: int
    cache_hit: bool
    has_error: bool
    destination_table: Optional[str]
    referenced_table_count: int

    @classmethod
    def from_record(cls, record: RawQueryRecord, cost_per_terabyte: float,
                    max_text_length: Optional[int] = None) -> "RecentQuery":
        text = record.query_text or ""
        if max_text_length is not None and len(text) > max_text_length:
            text = text[:max_text_length]
        return cls(
            job_id=record.job_id,
            timestamp=record.timestamp,
            statement_type=record.statement_type,
            priority=record.priority,
            query_text=text,
            total_bytes_processed=record.bytes_processed,
            total_bytes_billed=record.bytes_billed,
            query_cost_usd=bytes_to_cost(record.bytes_billed, cost_per_terabyte),
            slot_milliseconds=record.slot_milliseconds,
            cache_hit=record.cache_hit,
            has_error=record.has_error,
            destination_table=record.destination_table.table_key if record.destination_table else None,
            referenced_table_count=len(record.referenced_tables),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat(),
            "statement_type": self.statement_type,
            "priority": self.priority,
            "query_text": self.query_text,
            "total_bytes_processed": self.total_bytes_processed,
            "total_bytes_billed": self.total_bytes_billed,
            "query_cost_usd": round_usd(self.query_cost_usd),
            "slot_milliseconds": self.slot_milliseconds,
            "cache_hit": self.cache_hit,
            "has_error": self.has_error,
            "destination_table": self.destination_table,
            "referenced_table_count": self.referenced_table_count,
        }


# ============================================================================
# OUTPUT SHAPES
# ============================================================================

@dataclass(frozen=True)
class DailyActorSummary:
    """Cost rollup for one (date, project, actor) triple."""
    date: date
    project_id: str
    actor: str
    actor_kind: ActorKind
    query_count: int = 0
    cache_hit_count: int = 0
    error_count: int = 0
    total_bytes_processed: int = 0
    total_bytes_billed: int = 0
    estimated_cost_usd: float = 0.0
    slot_hours: float = 0.0
    cache_hit_percentage: float = 0.0
    dataset_costs: Tuple[DatasetCost, ...] = ()
    table_costs: Tuple[TableCost, ...] = ()
    hourly_breakdown: Tuple[HourlyBucket, ...] = ()
    weekday_breakdown: Tuple[WeekdayBucket, ...] = ()
    recent_queries: Tuple[RecentQuery, ...] = ()

    @property
    def is_service_account(self) -> bool:
        return self.actor_kind is ActorKind.SERVICE_ACCOUNT

    @property
    def key(self) -> SummaryKey:
        return SummaryKey(self.date, self.project_id, self.actor, self.is_service_account)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "project_id": self.project_id,
            "actor": self.actor,
            "actor_kind": self.actor_kind.value,
            "is_service_account": self.is_service_account,
            "user_email": self.actor,
            "service_account": self.actor if self.is_service_account else None,
            "query_count": self.query_count,
            "cache_hit_count": self.cache_hit_count,
            "error_count": self.error_count,
            "total_bytes_processed": self.total_bytes_processed,
            "total_bytes_billed": self.total_bytes_billed,
            "estimated_cost_usd": round_usd(self.estimated_cost_usd),
            "slot_hours": round_half_up(self.slot_hours, 4),
            "cache_hit_percentage": round_half_up(self.cache_hit_percentage, 2),
            "dataset_costs": [d.to_dict() for d in self.dataset_costs],
            "table_costs": [t.to_dict() for t in self.table_costs],
            "hourly_breakdown": [h.to_dict() for h in self.hourly_breakdown],
            "weekday_breakdown": [w.to_dict() for w in self.weekday_breakdown],
            "recent_queries": [q.to_dict() for q in self.recent_queries],
        }


@dataclass
class RunResult:
    """Output of one aggregation run plus the metadata needed for monitoring it."""
    project_id: Optional[str]
    window: DateRange
    summaries: List[DailyActorSummary] = field(default_factory=list)
    records_read: int = 0
    records_valid: int = 0
    skipped_records: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    out_of_window: int = 0
    excluded_records: int = 0
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: float = 0.0

    @property
    def data_available(self) -> bool:
        return self.records_valid > 0

    @property
    def total_cost_usd(self) -> float:
        return sum(s.estimated_cost_usd for s in self.summaries)

    @property
    def total_queries(self) -> int:
        return sum(s.query_count for s in self.summaries)

    def metadata(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "window": self.window.to_dict(),
            "generated_at": self.generated_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "records_read": self.records_read,
            "records_valid": self.records_valid,
            "skipped_records": self.skipped_records,
            "skip_reasons": dict(sorted(self.skip_reasons.items())),
            "out_of_window": self.out_of_window,
            "excluded_records": self.excluded_records,
            "data_available": self.data_available,
            "summary_count": len(self.summaries),
            "total_queries": self.total_queries,
            "total_cost_usd": round_usd(self.total_cost_usd),
        }

    def to_dict(self, include_summaries: bool = True) -> Dict[str, Any]:
        result = {"metadata": self.metadata()}
        if include_summaries:
            result["summaries"] = [s.to_dict() for s in self.summaries]
        return result


def summaries_to_json(summaries: List[DailyActorSummary], indent: Optional[int] = 2) -> str:
    """Serialize summaries deterministically (same input, same bytes)."""
    return json.dumps([s.to_dict() for s in summaries], indent=indent)
