"""Pydantic configuration models for crossware.

Every section is optional; handler sections carry an ``enabled`` flag that
:func:`crossware.config.loader.build_pipeline` honours.
"""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from crossware.constants import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_REQUEST_ID_HEADER,
    DEFAULT_TIMEOUT,
    DEFAULT_TIMEOUT_MESSAGE,
    DEFAULT_TIMEOUT_STATUS,
    SENSITIVE_HEADERS,
)
from crossware.utils import parse_time

# ── Built-in handler sections ────────────────────────────────────────────


class RequestIdSettings(BaseModel):
    """Options for :class:`~crossware.handlers.RequestIdHandler`."""

    enabled: bool = True
    header: str = Field(
        default=DEFAULT_REQUEST_ID_HEADER,
        min_length=1,
        description="Header carrying the correlation id.",
    )
    set_response_header: bool = Field(
        default=True, description="Echo the id on the reply."
    )


class TimeoutSettings(BaseModel):
    """Options for :class:`~crossware.handlers.TimeoutHandler`."""

    enabled: bool = False
    duration: Union[str, int, float] = Field(
        default=DEFAULT_TIMEOUT,
        description="Milliseconds or a duration string such as '30s'.",
    )
    status: int = Field(default=DEFAULT_TIMEOUT_STATUS, ge=100, le=599)
    message: str = DEFAULT_TIMEOUT_MESSAGE

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, v: Union[str, int, float]) -> Union[str, int, float]:
        parse_time(v)
        return v


class ErrorHandlerSettings(BaseModel):
    """Options for :class:`~crossware.handlers.ErrorHandler`."""

    enabled: bool = True
    catch_all: bool = True
    expose: bool = Field(
        default=False,
        description="Include error messages and tracebacks in replies. Never enable in production.",
    )
    log: bool = True
    format: Literal["json", "html", "text"] = "json"


# ── Adapter & logging sections ───────────────────────────────────────────


class AdapterSettings(BaseModel):
    """Host-framework integration options.

    Handed to the adapter factories as ``settings=config.adapter``.
    """

    pass_through: Optional[bool] = Field(
        default=None,
        description="Override the adapter's pass-through default.",
    )


class LoggingSettings(BaseModel):
    """Options applied by :func:`crossware.config.loader.configure_logging`."""

    level: str = DEFAULT_LOG_LEVEL
    file: Optional[str] = Field(default=None, description="Also log to this file.")
    redact_headers: List[str] = Field(default_factory=lambda: list(SENSITIVE_HEADERS))

    @field_validator("level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level


# ── Top level ────────────────────────────────────────────────────────────


class CrosswareConfig(BaseModel):
    """Top-level configuration document."""

    request_id: RequestIdSettings = Field(default_factory=RequestIdSettings)
    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    error_handler: ErrorHandlerSettings = Field(default_factory=ErrorHandlerSettings)
    adapter: AdapterSettings = Field(default_factory=AdapterSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
