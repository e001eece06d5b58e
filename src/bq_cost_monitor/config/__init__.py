from bq_cost_monitor.config.settings import (
    EngineSettings,
    ProjectSettings,
    Settings,
    build_engine_settings,
    load_settings,
    settings_from_dict,
)

__all__ = [
    "EngineSettings",
    "ProjectSettings",
    "Settings",
    "build_engine_settings",
    "load_settings",
    "settings_from_dict",
]
