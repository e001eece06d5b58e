"""Configuration settings for the cost monitor."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bq_cost_monitor.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "projects.json"

# camelCase keys accepted from legacy projects.json files
LEGACY_SETTING_KEYS = {
    "historyDays": "history_window_days",
    "costPerTerabyte": "cost_per_terabyte",
    "topNDatasets": "top_n_datasets",
    "topNTables": "top_n_tables",
    "topNRecentQueries": "top_n_recent_queries",
    "serviceAccountDomainSuffixes": "service_account_domain_suffixes",
    "serviceAccountPrefixes": "service_account_prefixes",
}

# Legacy keys still present in deployed files, read by the old scheduler only
IGNORED_SETTING_KEYS = ("refreshInterval",)


class ProjectSettings(BaseModel):
    id: str = Field(..., min_length=1, description="GCP Project ID")
    name: Optional[str] = Field(None, description="Display name, defaults to the project ID")
    location: str = Field("US", description="BigQuery location of INFORMATION_SCHEMA.JOBS")
    disabled: bool = False

    @model_validator(mode="after")
    def _default_name(self):
        if not self.name:
            self.name = self.id
        return self


class EngineSettings(BaseModel):
    """Options recognised by the aggregation engine."""

    cost_per_terabyte: float = 5.0
    history_window_days: int = 30
    top_n_datasets: int = 10
    top_n_tables: int = 100
    top_n_recent_queries: int = 100
    service_account_domain_suffixes: List[str] = [".gserviceaccount.com"]
    service_account_prefixes: List[str] = ["service-"]
    query_text_max_length: int = 1000
    excluded_statement_types: List[str] = ["SCRIPT"]
    rebuild_match_project: bool = False

    @field_validator("cost_per_terabyte")
    @classmethod
    def _non_negative_cost(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be zero or positive")
        return value

    @field_validator(
        "history_window_days",
        "top_n_datasets",
        "top_n_tables",
        "top_n_recent_queries",
        "query_text_max_length",
    )
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("service_account_domain_suffixes", "service_account_prefixes")
    @classmethod
    def _non_empty_patterns(cls, value: List[str]) -> List[str]:
        if any(not pattern.strip() for pattern in value):
            raise ValueError("patterns must be non-empty strings")
        return [pattern.strip().lower() for pattern in value]

    @field_validator("excluded_statement_types")
    @classmethod
    def _upper_statement_types(cls, value: List[str]) -> List[str]:
        return [statement.upper() for statement in value]


class Settings(BaseSettings):
    """Application settings loaded from the project file, environment variables or .env file."""

    projects: List[ProjectSettings] = []
    engine: EngineSettings = EngineSettings()

    # Output
    output_dir: str = "output"
    storage_bucket: Optional[str] = None
    results_prefix: str = "results/"

    # Execution
    max_workers: int = 4
    query_timeout_seconds: int = 180

    # Logging
    log_level: str = "INFO"
    enable_json_logging: bool = False

    model_config = SettingsConfigDict(
        env_prefix="BQ_COST_MONITOR_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("max_workers", "query_timeout_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @property
    def enabled_projects(self) -> List[ProjectSettings]:
        return [project for project in self.projects if not project.disabled]


def _option_name(error: Dict[str, Any]) -> str:
    return ".".join(str(part) for part in error.get("loc", ())) or "<root>"


def _configuration_error(exc: ValidationError) -> ConfigurationError:
    first = exc.errors()[0]
    return ConfigurationError(_option_name(first), first.get("msg", str(exc)))


def _normalize_engine_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        LEGACY_SETTING_KEYS.get(key, key): value
        for key, value in raw.items()
        if key not in IGNORED_SETTING_KEYS
    }


def build_engine_settings(**overrides: Any) -> EngineSettings:
    """
    Validate engine options eagerly.

    Raises:
        ConfigurationError: naming the first offending option
    """
    try:
        return EngineSettings(**_normalize_engine_keys(overrides))
    except ValidationError as e:
        raise _configuration_error(e) from e


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Build Settings from the ``{"projects": [...], "settings": {...}}`` file layout."""
    data = dict(data)
    engine_raw = data.pop("settings", None)
    engine_alias = data.pop("engine", None)
    if engine_raw is None:
        engine_raw = engine_alias or {}
    if not isinstance(engine_raw, dict):
        raise ConfigurationError("settings", "must be a JSON object")

    try:
        settings = Settings(**data)
    except ValidationError as e:
        raise _configuration_error(e) from e

    # Engine values from the environment stay unless the file sets the same key
    engine_values = settings.engine.model_dump()
    engine_values.update(_normalize_engine_keys(engine_raw))
    try:
        engine = EngineSettings(**engine_values)
    except ValidationError as e:
        error = _configuration_error(e)
        raise ConfigurationError(f"settings.{error.option}", error.message) from e
    return settings.model_copy(update={"engine": engine})


def load_settings(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load configuration from a JSON project file.

    Args:
        config_path: Path to the file; falls back to the CONFIG_PATH environment
            variable, then to config/projects.json

    Returns:
        Validated Settings; defaults when the file does not exist

    Raises:
        ConfigurationError: if the file is not valid JSON or holds invalid values
    """
    resolved = Path(config_path or os.getenv("CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    if not resolved.exists():
        logger.warning(f"Configuration file not found at {resolved}, using defaults")
        try:
            return Settings()
        except ValidationError as e:
            raise _configuration_error(e) from e

    try:
        with open(resolved, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(str(resolved), f"not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(str(resolved), "top-level value must be a JSON object")

    settings = settings_from_dict(data)
    logger.info(f"Loaded configuration from {resolved} ({len(settings.projects)} projects)")
    return settings
