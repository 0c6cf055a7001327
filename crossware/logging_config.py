"""Logging configuration setup."""

import copy
import logging
import logging.config
import re
import sys
from typing import Any, Iterable, Mapping, Optional

from starlette.datastructures import Headers

from crossware.constants import DEFAULT_LOG_LEVEL, SENSITIVE_HEADERS
from crossware.utils import redact_headers

# ── Header redaction filter ──────────────────────────────────────────────

_REDACTED = "[REDACTED]"


class HeaderRedactionFilter(logging.Filter):
    """Logging filter that masks sensitive header values in log records.

    Header collections passed as log arguments are copied with the
    configured names masked; ``name: value`` / ``name=value`` fragments in
    the message text are masked as well.
    """

    def __init__(self, names: Iterable[str] = SENSITIVE_HEADERS) -> None:
        super().__init__()
        self.names = tuple(n.lower() for n in names)
        alternation = "|".join(re.escape(n) for n in self.names)
        self._pattern = re.compile(rf"(?i)\b({alternation})(\s*[:=]\s*)([^,;\n]+)") if self.names else None

    def _mask_text(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(lambda m: f"{m.group(1)}{m.group(2)}{_REDACTED}", text)

    def _mask_arg(self, arg: Any) -> Any:
        if isinstance(arg, Headers):
            return redact_headers(arg, self.names)
        if isinstance(arg, Mapping):
            return {
                k: _REDACTED if isinstance(k, str) and k.lower() in self.names else v
                for k, v in arg.items()
            }
        if isinstance(arg, str):
            return self._mask_text(arg)
        return arg

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask_arg(a) for a in record.args)
        elif isinstance(record.args, Mapping):
            record.args = {
                k: _REDACTED if isinstance(k, str) and k.lower() in self.names else self._mask_arg(v)
                for k, v in record.args.items()
            }
        return True


BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "redact_headers": {"()": HeaderRedactionFilter},
    },
    "formatters": {
        "simple": {
            "format": "%(asctime)s - %(name)25s:%(lineno)-4d - %(levelname)-7s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console_handler": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "simple",
            "filters": ["redact_headers"],
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "crossware": {
            "handlers": ["console_handler"],
            "propagate": False,
            "level": "INFO",
        },
        "aiohttp": {
            "handlers": ["console_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["console_handler"],
        "level": "WARNING",
    },
}

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(
    log_lvl_str: str = DEFAULT_LOG_LEVEL,
    log_file: Optional[str] = None,
    *,
    quiet: bool = True,
    redact: Iterable[str] = SENSITIVE_HEADERS,
) -> str:
    """
    Configure the ``crossware`` loggers.

    Args:
        log_lvl_str: The desired log level string (e.g., 'debug', 'info').
            Unknown levels fall back to ``INFO``.
        log_file: Also write records to this file.
        quiet: If *False*, print a short confirmation (and warnings) to stdout.
        redact: Header names masked by the redaction filter.

    Returns:
        The validated log level.
    """
    log_lvl_valid = log_lvl_str.upper()
    if log_lvl_valid not in _VALID_LEVELS:
        if not quiet:
            print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.")
        log_lvl_valid = "INFO"

    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_cfg["filters"]["redact_headers"]["names"] = tuple(redact)
    log_cfg["loggers"]["crossware"]["level"] = log_lvl_valid
    log_cfg["root"]["level"] = log_lvl_valid if log_lvl_valid == "DEBUG" else "WARNING"

    if log_file:
        log_cfg["handlers"]["file_handler"] = {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "simple",
            "filters": ["redact_headers"],
            "filename": log_file,
            "encoding": "utf-8",
        }
        for logger_cfg in log_cfg["loggers"].values():
            logger_cfg["handlers"].append("file_handler")
        log_cfg["root"]["handlers"].append("file_handler")

    try:
        logging.config.dictConfig(log_cfg)
        if not quiet:
            target = f", log file: {log_file}" if log_file else ""
            print(f"Logging initialized. Log level: {log_lvl_valid}{target}")
    except Exception as e_log_cfg:
        if not quiet:
            print(f"Error applying logging configuration: {e_log_cfg}", file=sys.stderr)
        raise

    return log_lvl_valid
