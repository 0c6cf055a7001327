"""Configuration loading, validation and pipeline assembly."""

from crossware.config.loader import (
    build_pipeline,
    configure_logging,
    expand_env_vars,
    load_config,
    parse_config,
)
from crossware.config.schema import (
    AdapterSettings,
    CrosswareConfig,
    ErrorHandlerSettings,
    LoggingSettings,
    RequestIdSettings,
    TimeoutSettings,
)

__all__ = [
    "AdapterSettings",
    "CrosswareConfig",
    "ErrorHandlerSettings",
    "LoggingSettings",
    "RequestIdSettings",
    "TimeoutSettings",
    "build_pipeline",
    "configure_logging",
    "expand_env_vars",
    "load_config",
    "parse_config",
]
