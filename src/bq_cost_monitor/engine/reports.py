#!/usr/bin/env python3
"""
Derived reports over actor-day summaries.

- Daily project totals with a volume-weighted cache hit rate
- Dataset cost summary with the heaviest users of each dataset
- Service account summary with each account's most expensive datasets
- User x dataset attribution with cost shares and top tables

Costs are accumulated from the unrounded summary values and rounded to
cents only in the returned rows.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Set, Tuple

from bq_cost_monitor.models import DailyActorSummary, round_half_up, round_usd, round_bytes


def _percentage(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round_half_up(part / whole * 100, 2)


def _rank(entries: Iterable[Dict[str, Any]], n: int, cost_field: str) -> List[Dict[str, Any]]:
    return sorted(entries, key=lambda entry: -entry[cost_field])[:n]


def _order_rows(rows: List[Dict[str, Any]], cost_field: str, *tie_fields: str) -> List[Dict[str, Any]]:
    return sorted(
        rows,
        key=lambda row: (-date.fromisoformat(row["date"]).toordinal(), -row[cost_field],
                         *(row[name] for name in tie_fields)),
    )


# ============================================================================
# DAILY PROJECT SUMMARY
# ============================================================================

@dataclass
class _ProjectDay:
    query_count: int = 0
    cache_hit_count: int = 0
    error_count: int = 0
    bytes_processed: int = 0
    bytes_billed: int = 0
    cost_usd: float = 0.0
    slot_hours: float = 0.0
    actors: Set[str] = field(default_factory=set)
    service_accounts: Set[str] = field(default_factory=set)


def daily_project_summary(summaries: Iterable[DailyActorSummary]) -> List[Dict[str, Any]]:
    """
    Totals per (date, project).

    The cache hit percentage is weighted by query volume,
    sum(cache hits) / sum(queries), never an average of per-actor percentages.
    """
    days: Dict[Tuple[date, str], _ProjectDay] = {}
    for summary in summaries:
        key = (summary.date, summary.project_id)
        day = days.setdefault(key, _ProjectDay())
        day.query_count += summary.query_count
        day.cache_hit_count += summary.cache_hit_count
        day.error_count += summary.error_count
        day.bytes_processed += summary.total_bytes_processed
        day.bytes_billed += summary.total_bytes_billed
        day.cost_usd += summary.estimated_cost_usd
        day.slot_hours += summary.slot_hours
        day.actors.add(summary.actor)
        if summary.is_service_account:
            day.service_accounts.add(summary.actor)

    rows = []
    for (day_date, project_id), day in days.items():
        rows.append({
            "date": day_date.isoformat(),
            "project_id": project_id,
            "total_queries": day.query_count,
            "total_cache_hits": day.cache_hit_count,
            "total_errors": day.error_count,
            "total_bytes_processed": day.bytes_processed,
            "total_bytes_billed": day.bytes_billed,
            "total_estimated_cost_usd": round_usd(day.cost_usd),
            "total_slot_hours": round_half_up(day.slot_hours, 4),
            "cache_hit_percentage": _percentage(day.cache_hit_count, day.query_count),
            "unique_actors": len(day.actors),
            "service_accounts": len(day.service_accounts),
            "_cost": day.cost_usd,
        })
    return _strip_sort_field(_order_rows(rows, "_cost", "project_id"))


# ============================================================================
# DATASET COST SUMMARY
# ============================================================================

def dataset_cost_summary(summaries: Iterable[DailyActorSummary], top_n: int = 10) -> List[Dict[str, Any]]:
    """Totals per (date, project, dataset) with the top ``top_n`` actors by cost."""
    datasets: Dict[Tuple[date, str, str], Dict[str, Any]] = {}

    for summary in summaries:
        for dataset in summary.dataset_costs:
            key = (summary.date, summary.project_id, dataset.dataset_key)
            entry = datasets.setdefault(key, {
                "query_count": 0, "bytes_processed": 0.0, "bytes_billed": 0.0, "cost_usd": 0.0, "users": {},
            })
            entry["query_count"] += dataset.query_count
            entry["bytes_processed"] += dataset.bytes_processed
            entry["bytes_billed"] += dataset.bytes_billed
            entry["cost_usd"] += dataset.cost_usd

            user = entry["users"].setdefault(summary.actor, {
                "actor": summary.actor,
                "is_service_account": summary.is_service_account,
                "cost_usd": 0.0,
                "bytes_processed": 0.0,
            })
            user["cost_usd"] += dataset.cost_usd
            user["bytes_processed"] += dataset.bytes_processed

    rows = []
    for (day_date, project_id, dataset_key), entry in datasets.items():
        top_users = [
            {
                "actor": user["actor"],
                "is_service_account": user["is_service_account"],
                "cost_usd": round_usd(user["cost_usd"]),
                "bytes_processed": round_bytes(user["bytes_processed"]),
            }
            for user in _rank(entry["users"].values(), top_n, "cost_usd")
        ]
        rows.append({
            "date": day_date.isoformat(),
            "project_id": project_id,
            "dataset_key": dataset_key,
            "unique_actors": len(entry["users"]),
            "total_queries": entry["query_count"],
            "total_bytes_processed": round_bytes(entry["bytes_processed"]),
            "total_bytes_billed": round_bytes(entry["bytes_billed"]),
            "total_cost_usd": round_usd(entry["cost_usd"]),
            "top_users": top_users,
            "_cost": entry["cost_usd"],
        })
    return _strip_sort_field(_order_rows(rows, "_cost", "project_id", "dataset_key"))


# ============================================================================
# SERVICE ACCOUNT SUMMARY
# ============================================================================

def service_account_summary(summaries: Iterable[DailyActorSummary], top_n: int = 10) -> List[Dict[str, Any]]:
    """Totals per (date, project, service account) with its ``top_n`` most expensive datasets."""
    accounts: Dict[Tuple[date, str, str], Dict[str, Any]] = {}

    for summary in summaries:
        if not summary.is_service_account:
            continue
        key = (summary.date, summary.project_id, summary.actor)
        entry = accounts.setdefault(key, {
            "query_count": 0, "bytes_processed": 0, "bytes_billed": 0, "cost_usd": 0.0, "datasets": {},
        })
        entry["query_count"] += summary.query_count
        entry["bytes_processed"] += summary.total_bytes_processed
        entry["bytes_billed"] += summary.total_bytes_billed
        entry["cost_usd"] += summary.estimated_cost_usd

        for dataset in summary.dataset_costs:
            ds = entry["datasets"].setdefault(dataset.dataset_key, {
                "dataset_key": dataset.dataset_key, "cost_usd": 0.0, "bytes_processed": 0.0,
            })
            ds["cost_usd"] += dataset.cost_usd
            ds["bytes_processed"] += dataset.bytes_processed

    rows = []
    for (day_date, project_id, account), entry in accounts.items():
        rows.append({
            "date": day_date.isoformat(),
            "project_id": project_id,
            "service_account": account,
            "total_queries": entry["query_count"],
            "total_bytes_processed": entry["bytes_processed"],
            "total_bytes_billed": entry["bytes_billed"],
            "total_cost_usd": round_usd(entry["cost_usd"]),
            "top_datasets": [
                {
                    "dataset_key": ds["dataset_key"],
                    "cost_usd": round_usd(ds["cost_usd"]),
                    "bytes_processed": round_bytes(ds["bytes_processed"]),
                }
                for ds in _rank(entry["datasets"].values(), top_n, "cost_usd")
            ],
            "_cost": entry["cost_usd"],
        })
    return _strip_sort_field(_order_rows(rows, "_cost", "project_id", "service_account"))


# ============================================================================
# USER x DATASET ATTRIBUTION
# ============================================================================

def user_dataset_attribution(summaries: Iterable[DailyActorSummary], top_n_tables: int = 10) -> List[Dict[str, Any]]:
    """
    Cross-tabulation of actors and datasets per (date, project).

    ``pct_of_user_cost`` is the share of the actor's dataset-attributed cost that
    day going to this dataset; ``pct_of_dataset_cost`` is the share of the
    dataset's cost that day coming from this actor.
    """
    cells: Dict[Tuple[date, str, str, bool, str], Dict[str, Any]] = {}
    user_totals: Dict[Tuple[date, str, str], float] = {}
    dataset_totals: Dict[Tuple[date, str, str], float] = {}

    for summary in summaries:
        tables_by_dataset: Dict[str, List] = {}
        for table in summary.table_costs:
            tables_by_dataset.setdefault(table.dataset_key, []).append(table)

        for dataset in summary.dataset_costs:
            key = (summary.date, summary.project_id, summary.actor, summary.is_service_account, dataset.dataset_key)
            cell = cells.setdefault(key, {
                "query_count": 0, "bytes_processed": 0.0, "cost_usd": 0.0, "tables": {},
            })
            cell["query_count"] += dataset.query_count
            cell["bytes_processed"] += dataset.bytes_processed
            cell["cost_usd"] += dataset.cost_usd

            for table in tables_by_dataset.get(dataset.dataset_key, ()):
                entry = cell["tables"].setdefault(table.table_key, {
                    "table_key": table.table_key, "cost_usd": 0.0, "bytes_processed": 0.0, "rebuild_cost_usd": 0.0,
                })
                entry["cost_usd"] += table.cost_usd
                entry["bytes_processed"] += table.bytes_processed
                entry["rebuild_cost_usd"] += table.rebuild_cost_usd

            user_key = (summary.date, summary.project_id, summary.actor)
            user_totals[user_key] = user_totals.get(user_key, 0.0) + dataset.cost_usd
            dataset_key = (summary.date, summary.project_id, dataset.dataset_key)
            dataset_totals[dataset_key] = dataset_totals.get(dataset_key, 0.0) + dataset.cost_usd

    rows = []
    for (day_date, project_id, actor, is_service_account, dataset_key), cell in cells.items():
        rows.append({
            "date": day_date.isoformat(),
            "project_id": project_id,
            "actor": actor,
            "is_service_account": is_service_account,
            "dataset_key": dataset_key,
            "query_count": cell["query_count"],
            "bytes_processed": round_bytes(cell["bytes_processed"]),
            "cost_usd": round_usd(cell["cost_usd"]),
            "pct_of_user_cost": _percentage(cell["cost_usd"], user_totals[(day_date, project_id, actor)]),
            "pct_of_dataset_cost": _percentage(cell["cost_usd"], dataset_totals[(day_date, project_id, dataset_key)]),
            "top_tables": [
                {
                    "table_key": t["table_key"],
                    "cost_usd": round_usd(t["cost_usd"]),
                    "bytes_processed": round_bytes(t["bytes_processed"]),
                    "rebuild_cost_usd": round_usd(t["rebuild_cost_usd"]),
                }
                for t in _rank(cell["tables"].values(), top_n_tables, "cost_usd")
            ],
            "_cost": cell["cost_usd"],
        })
    return _strip_sort_field(_order_rows(rows, "_cost", "project_id", "actor", "dataset_key"))


def _strip_sort_field(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    for row in rows:
        row.pop("_cost", None)
    return rows
