#!/usr/bin/env python3
"""
Time-bucketed aggregation.

Groups records by (UTC date, project, actor, is_service_account), computes the
scalar totals and the hour-of-day / day-of-week sub-aggregations for each
group, then hands every group to the rollup builders and the assembler.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from bq_cost_monitor.config.settings import EngineSettings
from bq_cost_monitor.engine.assembler import assemble
from bq_cost_monitor.engine.identity import IdentityNormalizer
from bq_cost_monitor.engine.rollups import top_datasets, top_recent_queries, top_tables
from bq_cost_monitor.logger import log_pipeline_stage
from bq_cost_monitor.models import (
    DailyActorSummary,
    DailyTotals,
    DateRange,
    HourlyBucket,
    RawQueryRecord,
    SummaryKey,
    TableAttribution,
    WeekdayBucket,
    bytes_to_cost,
)

logger = logging.getLogger(__name__)

KeyedRecords = Sequence[Tuple[SummaryKey, RawQueryRecord]]


def summary_key(record: RawQueryRecord, normalizer: IdentityNormalizer) -> SummaryKey:
    identity = normalizer.classify(record.actor_email)
    return SummaryKey(record.date, record.project_id, identity.canonical_key, identity.is_service_account)


def compute_daily_totals(keyed_records: KeyedRecords, cost_per_terabyte: float) -> Dict[SummaryKey, DailyTotals]:
    totals: Dict[SummaryKey, DailyTotals] = {}
    for key, record in keyed_records:
        if key not in totals:
            totals[key] = DailyTotals(cost_per_terabyte=cost_per_terabyte)
        totals[key].add(record)
    return totals


def compute_hourly_rollups(keyed_records: KeyedRecords, cost_per_terabyte: float) -> Dict[SummaryKey, List[HourlyBucket]]:
    """Hour-of-day buckets nested inside each actor-day, ordered by hour."""
    buckets: Dict[SummaryKey, Dict[int, HourlyBucket]] = defaultdict(dict)
    for key, record in keyed_records:
        hour = record.hour_of_day
        bucket = buckets[key].get(hour)
        if bucket is None:
            bucket = buckets[key][hour] = HourlyBucket(hour_of_day=hour)
        bucket.query_count += 1
        bucket.bytes_billed += record.bytes_billed

    rollups = {}
    for key, by_hour in buckets.items():
        for bucket in by_hour.values():
            bucket.cost_usd = bytes_to_cost(bucket.bytes_billed, cost_per_terabyte)
        rollups[key] = [by_hour[hour] for hour in sorted(by_hour)]
    return rollups


def compute_weekday_rollups(keyed_records: KeyedRecords, cost_per_terabyte: float) -> Dict[SummaryKey, List[WeekdayBucket]]:
    """Day-of-week buckets nested inside each actor-day, ordered Sunday first."""
    buckets: Dict[SummaryKey, Dict[int, WeekdayBucket]] = defaultdict(dict)
    for key, record in keyed_records:
        day = record.day_of_week
        bucket = buckets[key].get(day)
        if bucket is None:
            bucket = buckets[key][day] = WeekdayBucket(day_of_week=day)
        bucket.query_count += 1
        bucket.bytes_billed += record.bytes_billed

    rollups = {}
    for key, by_day in buckets.items():
        for bucket in by_day.values():
            bucket.cost_usd = bytes_to_cost(bucket.bytes_billed, cost_per_terabyte)
        rollups[key] = [by_day[day] for day in sorted(by_day)]
    return rollups


def group_attributions(
    keyed_records: KeyedRecords,
    attributions: Iterable[TableAttribution],
) -> Dict[SummaryKey, List[TableAttribution]]:
    """Attach attributions to the actor-day of their record, in record order."""
    by_job: Dict[str, List[TableAttribution]] = defaultdict(list)
    for attribution in attributions:
        by_job[attribution.job_id].append(attribution)

    grouped: Dict[SummaryKey, List[TableAttribution]] = defaultdict(list)
    for key, record in keyed_records:
        grouped[key].extend(by_job.get(record.job_id, ()))
    return grouped


def group_records(keyed_records: KeyedRecords) -> Dict[SummaryKey, List[RawQueryRecord]]:
    grouped: Dict[SummaryKey, List[RawQueryRecord]] = defaultdict(list)
    for key, record in keyed_records:
        grouped[key].append(record)
    return grouped


def sort_summaries(summaries: Iterable[DailyActorSummary]) -> List[DailyActorSummary]:
    """Newest date first, most expensive first, then project and actor for a total order."""
    return sorted(
        summaries,
        key=lambda s: (-s.date.toordinal(), -s.estimated_cost_usd, s.project_id, s.actor, s.is_service_account),
    )


@log_pipeline_stage("aggregate")
def aggregate(
    records: Iterable[RawQueryRecord],
    attributions: Iterable[TableAttribution],
    window: Optional[DateRange] = None,
    settings: Optional[EngineSettings] = None,
    normalizer: Optional[IdentityNormalizer] = None,
) -> List[DailyActorSummary]:
    """
    Aggregate a windowed record set into one summary per actor-day.

    Args:
        records: Validated records; those outside ``window`` are ignored
        attributions: Table attributions of the records, joined on job_id
        window: Dates to keep, all records when None
        settings: Engine options (cost per TiB, top-N sizes, service-account patterns)
        normalizer: Actor classifier, built from ``settings`` when omitted

    Returns:
        Summaries ordered by date descending, then cost descending
    """
    settings = settings or EngineSettings()
    normalizer = normalizer or IdentityNormalizer.from_settings(settings)
    cost_per_terabyte = settings.cost_per_terabyte

    keyed = [
        (summary_key(record, normalizer), record)
        for record in records
        if window is None or window.contains(record.timestamp)
    ]

    totals = compute_daily_totals(keyed, cost_per_terabyte)
    hourly = compute_hourly_rollups(keyed, cost_per_terabyte)
    weekday = compute_weekday_rollups(keyed, cost_per_terabyte)
    attributions_by_key = group_attributions(keyed, attributions)
    records_by_key = group_records(keyed)

    dataset_rollups = {
        key: top_datasets(attrs, settings.top_n_datasets, cost_per_terabyte)
        for key, attrs in attributions_by_key.items()
        if attrs
    }
    table_rollups = {
        key: top_tables(attrs, settings.top_n_tables, cost_per_terabyte)
        for key, attrs in attributions_by_key.items()
        if attrs
    }
    recent = {
        key: top_recent_queries(key_records, settings.top_n_recent_queries,
                                cost_per_terabyte, settings.query_text_max_length)
        for key, key_records in records_by_key.items()
    }

    summaries = [
        assemble(key, totals, dataset_rollups, table_rollups, hourly, weekday, recent)
        for key in totals
    ]
    logger.debug(f"Aggregated {len(keyed)} records into {len(summaries)} actor-day summaries")
    return sort_summaries(summaries)
