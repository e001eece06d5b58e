from datetime import date

from bq_cost_monitor.engine.assembler import assemble
from bq_cost_monitor.models import ActorKind, DailyTotals, DatasetCost, SummaryKey


def test_missing_rollups_default_to_empty():
    key = SummaryKey(date(2024, 3, 15), "p", "etl@p.iam.gserviceaccount.com", True)
    totals = DailyTotals(query_count=2, cache_hit_count=1)

    summary = assemble(key, {key: totals}, {}, {}, {}, {}, {})

    assert summary.actor_kind is ActorKind.SERVICE_ACCOUNT
    assert summary.query_count == 2
    assert summary.cache_hit_percentage == 50.0
    assert summary.dataset_costs == ()
    assert summary.table_costs == ()
    assert summary.hourly_breakdown == ()
    assert summary.weekday_breakdown == ()
    assert summary.recent_queries == ()

    data = summary.to_dict()
    assert data["dataset_costs"] == []
    assert data["recent_queries"] == []
    assert data["service_account"] == "etl@p.iam.gserviceaccount.com"


def test_missing_totals_default_to_zero():
    key = SummaryKey(date(2024, 3, 15), "p", "analyst@example.com", False)
    dataset = DatasetCost(dataset_key="p.sales", query_count=1, cost_usd=1.0)

    summary = assemble(key, {}, {key: [dataset]}, {}, {}, {}, {})

    assert summary.query_count == 0
    assert summary.estimated_cost_usd == 0.0
    assert summary.cache_hit_percentage == 0.0
    assert summary.dataset_costs == (dataset,)
    assert summary.to_dict()["service_account"] is None
