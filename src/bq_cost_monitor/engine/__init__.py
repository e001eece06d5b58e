"""Aggregation engine: ingestion, classification, attribution, rollups and reports."""

from bq_cost_monitor.engine.aggregator import aggregate, sort_summaries
from bq_cost_monitor.engine.assembler import assemble
from bq_cost_monitor.engine.attribution import attribute, attribute_all
from bq_cost_monitor.engine.identity import UNKNOWN_ACTOR, IdentityNormalizer, classify
from bq_cost_monitor.engine.ingestion import IngestionResult, RecordIngestor, parse_record
from bq_cost_monitor.engine.pipeline import CostAttributionPipeline
from bq_cost_monitor.engine.reports import (
    daily_project_summary,
    dataset_cost_summary,
    service_account_summary,
    user_dataset_attribution,
)
from bq_cost_monitor.engine.rollups import top_datasets, top_recent_queries, top_tables

__all__ = [
    "CostAttributionPipeline",
    "IdentityNormalizer",
    "IngestionResult",
    "RecordIngestor",
    "UNKNOWN_ACTOR",
    "aggregate",
    "assemble",
    "attribute",
    "attribute_all",
    "classify",
    "daily_project_summary",
    "dataset_cost_summary",
    "parse_record",
    "service_account_summary",
    "sort_summaries",
    "top_datasets",
    "top_recent_queries",
    "top_tables",
    "user_dataset_attribution",
]
