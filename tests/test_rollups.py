from datetime import timedelta

from bq_cost_monitor.engine.rollups import top_datasets, top_recent_queries, top_tables
from bq_cost_monitor.models import TableAttribution
from tests.fixtures.sample_jobs import TIB, at


def attr(job_id, table_key, billed, is_rebuild=False):
    dataset_key = table_key.rsplit(".", 1)[0]
    return TableAttribution(job_id, table_key, dataset_key, billed, billed, is_rebuild)


class TestTopTables:

    def test_ranked_by_cost(self):
        tables = top_tables([
            attr("j1", "p.a.small", TIB / 4),
            attr("j2", "p.a.large", TIB),
            attr("j3", "p.b.medium", TIB / 2),
        ])

        assert [t.table_key for t in tables] == ["p.a.large", "p.b.medium", "p.a.small"]
        assert tables[0].cost_usd == 5.0

    def test_ties_keep_first_seen_order(self):
        first = [attr("j1", "p.a.x", 100), attr("j2", "p.a.y", 100), attr("j3", "p.a.z", 100)]
        second = list(reversed(first))

        assert [t.table_key for t in top_tables(first)] == ["p.a.x", "p.a.y", "p.a.z"]
        assert [t.table_key for t in top_tables(second)] == ["p.a.z", "p.a.y", "p.a.x"]

    def test_truncates_silently(self):
        attributions = [attr(f"j{i}", f"p.a.t{i}", i + 1) for i in range(150)]

        tables = top_tables(attributions, n=100)

        assert len(tables) == 100
        assert tables[0].table_key == "p.a.t149"

    def test_rebuild_and_incremental_cost(self):
        tables = top_tables([
            attr("j1", "p.mart.daily", TIB / 2, is_rebuild=True),
            attr("j2", "p.mart.daily", TIB / 2),
        ])

        daily = tables[0]
        assert daily.query_count == 2
        assert daily.rebuild_count == 1
        assert daily.is_rebuild
        assert daily.cost_usd == 5.0
        assert daily.rebuild_cost_usd == 2.5
        assert daily.incremental_cost_usd == 2.5

    def test_custom_cost_per_terabyte(self):
        assert top_tables([attr("j1", "p.a.t", TIB)], cost_per_terabyte=6.25)[0].cost_usd == 6.25


class TestTopDatasets:

    def test_rolls_tables_into_datasets(self):
        datasets = top_datasets([
            attr("j1", "p.sales.orders", TIB / 2),
            attr("j1", "p.sales.customers", TIB / 2),
            attr("j2", "p.hr.staff", TIB / 4),
        ])

        sales, hr = datasets
        assert sales.dataset_key == "p.sales"
        assert sales.query_count == 1
        assert sales.bytes_billed == TIB
        assert sales.cost_usd == 5.0
        assert hr.dataset_key == "p.hr"
        assert hr.cost_usd == 1.25

    def test_default_limit_is_ten(self):
        attributions = [attr(f"j{i}", f"p.ds{i}.t", 1000 + i) for i in range(12)]

        datasets = top_datasets(attributions)

        assert len(datasets) == 10
        assert datasets[0].dataset_key == "p.ds11"
        assert datasets[-1].dataset_key == "p.ds2"

    def test_zero_cost_ties_keep_order(self):
        datasets = top_datasets([attr("j1", "p.b.t", 0), attr("j2", "p.a.t", 0)])

        assert [d.dataset_key for d in datasets] == ["p.b", "p.a"]


class TestTopRecentQueries:

    def test_newest_first(self, make_record):
        records = [make_record(timestamp=at() + timedelta(minutes=i)) for i in range(5)]

        recent = top_recent_queries(records, n=3)

        assert [q.job_id for q in recent] == [records[4].job_id, records[3].job_id, records[2].job_id]

    def test_equal_timestamps_keep_input_order(self, make_record):
        records = [make_record(timestamp=at()) for _ in range(3)]

        assert [q.job_id for q in top_recent_queries(records)] == [r.job_id for r in records]

    def test_entry_fields(self, make_record):
        record = make_record(
            bytes_billed=TIB,
            bytes_processed=TIB,
            query_text="SELECT * FROM sales.orders WHERE region = 'EMEA'",
            referenced_tables=["p.sales.orders"],
            destination_table="p.tmp.anon",
        )

        entry = top_recent_queries([record], max_text_length=8)[0]

        assert entry.query_text == "SELECT *"
        assert entry.query_cost_usd == 5.0
        assert entry.destination_table == "p.tmp.anon"
        assert entry.referenced_table_count == 1
        assert entry.to_dict()["timestamp"] == "2024-03-15T10:00:00+00:00"
