#!/usr/bin/env python3
"""
Common Logger Module for the BigQuery Cost Monitor

Provides standardized logging configuration across all modules including:
- Console and optional file handlers with consistent formatting
- JSON logging through structlog for production environments
- Stage and per-project timing on a dedicated performance logger
- Decorators that time pipeline stages and re-raise failures
"""

import logging
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

import structlog


# Default logging configuration
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
DEFAULT_MODULE_NAME = 'bq_cost_monitor'

# Performance tracking logger
PERFORMANCE_LOGGER_NAME = 'bq_cost_monitor.performance'


def configure_structlog() -> None:
    """Configure structlog to render JSON through the stdlib logging handlers."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class PerformanceLogger:
    """Logger for tracking stage timings and run metrics."""

    def __init__(self, name: str = PERFORMANCE_LOGGER_NAME):
        self.logger = logging.getLogger(name)

    def log_timing(self, operation: str, duration_ms: float, context: Optional[Dict[str, Any]] = None):
        """Log timing information for operations."""
        context = context or {}
        self.logger.info(
            f"Performance: {operation} took {duration_ms:.2f}ms",
            extra={
                'operation': operation,
                'duration_ms': duration_ms,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                **context
            }
        )

    def log_stage_performance(self, stage: str, duration_ms: float,
                              records_processed: int = 0, cost_usd: float = 0.0):
        """Log aggregation stage metrics."""
        self.logger.info(
            f"Stage Performance: {stage} - {records_processed} records, "
            f"${cost_usd:.2f} in {duration_ms:.2f}ms",
            extra={
                'stage': stage,
                'duration_ms': duration_ms,
                'records_processed': records_processed,
                'cost_usd': cost_usd,
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        )


class StructuredLogger:
    """Structured logger with JSON output for production environments."""

    def __init__(self, name: str, enable_json: bool = False):
        self.name = name
        self.enable_json = enable_json
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        if self.enable_json:
            configure_structlog()
        return logging.getLogger(self.name)

    def _emit(self, level: str, message: str, **context):
        if self.enable_json:
            log = structlog.get_logger(self.name)
            getattr(log, level)(message, **context)
        else:
            getattr(self.logger, level)(f"{message} - Context: {context}" if context else message)

    def info(self, message: str, **context):
        """Log info message with context."""
        self._emit('info', message, **context)

    def warning(self, message: str, **context):
        """Log warning message with context."""
        self._emit('warning', message, **context)

    def debug(self, message: str, **context):
        """Log debug message with context."""
        self._emit('debug', message, **context)

    def error(self, message: str, error: Optional[Exception] = None, **context):
        """Log error message with context and exception details."""
        error_context = {
            'error_type': type(error).__name__ if error else 'Unknown',
            'error_message': str(error) if error else 'No error details',
            **context
        }
        self._emit('error', message, **error_context)


def setup_logging(
    level: str = "INFO",
    enable_debug: bool = False,
    enable_json: bool = False,
    log_file: Optional[str] = None,
    module_name: str = DEFAULT_MODULE_NAME
) -> logging.Logger:
    """
    Setup standardized logging configuration for the entire application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_debug: Enable debug logging
        enable_json: Enable JSON structured logging
        log_file: Optional log file path
        module_name: Name of the module for logger identification

    Returns:
        Configured logger instance
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if enable_debug:
        log_level = logging.DEBUG

    logger = logging.getLogger(module_name)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if enable_json:
        configure_structlog()
        formatter = logging.Formatter('%(message)s')
    else:
        formatter = logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # The performance logger is a child of the package logger but gets its own format
    perf_logger = logging.getLogger(PERFORMANCE_LOGGER_NAME)
    perf_logger.setLevel(logging.INFO)
    perf_logger.handlers.clear()
    perf_logger.propagate = False
    perf_handler = logging.StreamHandler(sys.stdout)
    perf_handler.setFormatter(logging.Formatter('PERF - %(asctime)s - %(message)s', DEFAULT_DATE_FORMAT))
    perf_logger.addHandler(perf_handler)

    logger.info(f"Logging configured - Level: {level}, Debug: {enable_debug}, JSON: {enable_json}")

    return logger


def get_logger(name: str, enable_json: bool = False) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__)
        enable_json: Enable JSON structured logging

    Returns:
        Logger instance
    """
    if enable_json:
        return StructuredLogger(name, enable_json=True).logger
    return logging.getLogger(name)


def log_function_call(logger: Optional[logging.Logger] = None):
    """
    Decorator to log function calls and execution time.

    Args:
        logger: Optional logger instance, will create one if not provided
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            func_logger = logger or logging.getLogger(func.__module__)
            start = time.perf_counter()
            func_logger.debug(f"Entering {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                func_logger.error(f"Error in {func.__name__}: {e}")
                PerformanceLogger().log_timing(
                    operation=f"{func.__module__}.{func.__name__}",
                    duration_ms=duration_ms,
                    context={'success': False, 'error': str(e)}
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            func_logger.debug(f"Completed {func.__name__} in {duration_ms:.2f}ms")
            PerformanceLogger().log_timing(
                operation=f"{func.__module__}.{func.__name__}",
                duration_ms=duration_ms,
                context={'success': True}
            )
            return result

        return wrapper
    return decorator


def log_pipeline_stage(stage_name: str):
    """
    Decorator for aggregation pipeline stages.

    Records the stage duration on the performance logger. When the result is
    sized (a list or dict of rollups) its length is reported as records processed.

    Args:
        stage_name: Name of the stage (ingest, attribute, aggregate, ...)
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            stage_logger = logging.getLogger(func.__module__)
            perf_logger = PerformanceLogger()
            start = time.perf_counter()

            stage_logger.debug(f"Starting pipeline stage: {stage_name}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                stage_logger.error(f"Pipeline stage failed: {stage_name} - {e}")
                perf_logger.log_timing(
                    operation=f"pipeline.{stage_name}",
                    duration_ms=duration_ms,
                    context={'success': False, 'error': str(e)}
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            records = len(result) if hasattr(result, '__len__') else 0
            perf_logger.log_stage_performance(
                stage=stage_name,
                duration_ms=duration_ms,
                records_processed=records,
            )
            stage_logger.debug(f"Completed pipeline stage: {stage_name} in {duration_ms:.2f}ms")
            return result

        return wrapper
    return decorator


def get_monitor_logger(debug: bool = False, enable_json: bool = False) -> logging.Logger:
    """Get the package logger configured for a monitoring run."""
    return setup_logging(
        level="DEBUG" if debug else "INFO",
        enable_debug=debug,
        enable_json=enable_json,
        module_name=DEFAULT_MODULE_NAME
    )


__all__ = [
    'setup_logging',
    'get_logger',
    'get_monitor_logger',
    'configure_structlog',
    'log_function_call',
    'log_pipeline_stage',
    'PerformanceLogger',
    'StructuredLogger',
]
