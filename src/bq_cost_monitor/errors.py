#!/usr/bin/env python3
"""
Error taxonomy for the BigQuery cost monitor.

Per-record problems are raised as RecordValidationError and recovered by
ingestion (skip + count). Everything else aborts the run it belongs to.
"""

from typing import Optional


class CostMonitorError(Exception):
    """Base class for all cost monitor errors."""


class ConfigurationError(CostMonitorError):
    """Invalid configuration, rejected before any aggregation begins."""

    def __init__(self, option: str, message: str):
        self.option = option
        self.message = message
        super().__init__(f"Invalid configuration option '{option}': {message}")


class RecordValidationError(CostMonitorError):
    """A raw job record is missing a required field or carries an impossible value."""

    def __init__(self, reason: str, message: str, job_id: Optional[str] = None):
        self.reason = reason
        self.job_id = job_id
        super().__init__(f"{message} (job_id={job_id or 'unknown'})")


class RecordSourceError(CostMonitorError):
    """The record stream could not be obtained. Fatal to the run."""

    def __init__(self, message: str, project_id: Optional[str] = None):
        self.project_id = project_id
        prefix = f"[{project_id}] " if project_id else ""
        super().__init__(f"{prefix}{message}")


class SinkError(CostMonitorError):
    """Persisting a finished run failed."""
