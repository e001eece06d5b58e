"""Merge per-dimension rollups onto actor-day summaries."""

from typing import Mapping, Sequence

from bq_cost_monitor.models import (
    ActorKind,
    DailyActorSummary,
    DailyTotals,
    DatasetCost,
    HourlyBucket,
    RecentQuery,
    SummaryKey,
    TableCost,
    WeekdayBucket,
)


def assemble(
    key: SummaryKey,
    daily_totals: Mapping[SummaryKey, DailyTotals],
    dataset_rollups: Mapping[SummaryKey, Sequence[DatasetCost]],
    table_rollups: Mapping[SummaryKey, Sequence[TableCost]],
    hourly_rollups: Mapping[SummaryKey, Sequence[HourlyBucket]],
    weekday_rollups: Mapping[SummaryKey, Sequence[WeekdayBucket]],
    recent_queries: Mapping[SummaryKey, Sequence[RecentQuery]],
) -> DailyActorSummary:
    """
    Build the summary for ``key``.

    A rollup without an entry for the key contributes an empty list, and
    missing totals contribute zeros, so every field of the result is populated.
    """
    totals = daily_totals.get(key) or DailyTotals()

    return DailyActorSummary(
        date=key.date,
        project_id=key.project_id,
        actor=key.actor,
        actor_kind=ActorKind.SERVICE_ACCOUNT if key.is_service_account else ActorKind.USER,
        query_count=totals.query_count,
        cache_hit_count=totals.cache_hit_count,
        error_count=totals.error_count,
        total_bytes_processed=totals.total_bytes_processed,
        total_bytes_billed=totals.total_bytes_billed,
        estimated_cost_usd=totals.estimated_cost_usd,
        slot_hours=totals.slot_hours,
        cache_hit_percentage=totals.cache_hit_percentage,
        dataset_costs=tuple(dataset_rollups.get(key, ())),
        table_costs=tuple(table_rollups.get(key, ())),
        hourly_breakdown=tuple(hourly_rollups.get(key, ())),
        weekday_breakdown=tuple(weekday_rollups.get(key, ())),
        recent_queries=tuple(recent_queries.get(key, ())),
    )
