"""Configuration file loading and pipeline assembly.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
validates it against :class:`~crossware.config.schema.CrosswareConfig` and
builds a pipeline from the enabled built-in handlers.
"""

import logging
import os
import re
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from crossware.config.schema import CrosswareConfig
from crossware.engine.chain import Pipeline
from crossware.errors import ConfigurationError
from crossware.handlers import ErrorHandler, RequestIdHandler, TimeoutHandler
from crossware.logging_config import setup_logging

logger = logging.getLogger(__name__)

_YAML_EXTS = frozenset({".yaml", ".yml"})
_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")


def expand_env_vars(value: Any) -> Any:
    """Recursively expand ``${VAR}`` references in string values.

    Unset variables are left as the literal placeholder.
    """
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


# ── Public API ───────────────────────────────────────────────────────────


def parse_config(raw_data: Dict[str, Any]) -> CrosswareConfig:
    """Expand and validate an already-parsed configuration mapping."""
    try:
        return CrosswareConfig.model_validate(expand_env_vars(raw_data))
    except ValidationError as exc:
        raise ConfigurationError(
            f"Configuration validation failed ({len(exc.errors())} error(s)):\n"
            f"{_format_validation_errors(exc)}"
        ) from exc


def load_config(cfg_fpath: str) -> CrosswareConfig:
    """Load, expand and validate a YAML configuration file.

    Raises:
        ConfigurationError: On a missing file, unsupported extension, parse
            errors or validation failures (all errors reported at once).
    """
    logger.debug("Loading configuration file: %s", cfg_fpath)
    if not os.path.exists(cfg_fpath):
        raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")

    config = parse_config(_read_config_file(cfg_fpath))
    logger.info(
        "Configuration loaded from %s (error_handler=%s, request_id=%s, timeout=%s).",
        cfg_fpath,
        config.error_handler.enabled,
        config.request_id.enabled,
        config.timeout.enabled,
    )
    return config


def build_pipeline(config: CrosswareConfig, *handlers: Any) -> Pipeline:
    """Assemble the enabled built-in handlers followed by *handlers*.

    Built-ins run in the order error handler, request id, timeout, so the
    error handler sees failures from everything after it.
    """
    pipeline = Pipeline()
    if config.error_handler.enabled:
        eh = config.error_handler
        pipeline.use(ErrorHandler(catch_all=eh.catch_all, expose=eh.expose, log=eh.log, format=eh.format))
    if config.request_id.enabled:
        pipeline.use(
            RequestIdHandler(
                header=config.request_id.header,
                set_response_header=config.request_id.set_response_header,
            )
        )
    if config.timeout.enabled:
        t = config.timeout
        pipeline.use(TimeoutHandler(duration=t.duration, status=t.status, message=t.message))
    pipeline.use(*handlers)
    logger.debug("Built %r from configuration.", pipeline)
    return pipeline


def configure_logging(config: CrosswareConfig, *, quiet: bool = True) -> str:
    """Apply the ``logging`` section via :func:`~crossware.logging_config.setup_logging`."""
    section = config.logging
    return setup_logging(section.level, section.file, quiet=quiet, redact=section.redact_headers)
