"""Small helpers shared by handlers and adapters: durations and content types."""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Tuple, Union

from starlette.datastructures import Headers

from crossware.messages import to_headers

# ── Durations ────────────────────────────────────────────────────────────

_TIME_UNITS_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

_TIME_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?$")


def parse_time(value: Union[str, int, float]) -> int:
    """Parse a duration into whole milliseconds.

    Numbers are taken as milliseconds; strings accept an optional unit
    suffix (``ms``, ``s``, ``m``, ``h``, ``d``), e.g. ``"30s"`` → ``30000``.

    Raises ``ValueError`` on negative, empty or malformed input.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid time value: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0 or value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"Invalid time value: {value!r}")
        return int(value)

    text = value.strip().lower()
    if not text:
        raise ValueError("Time value cannot be empty")
    match = _TIME_RE.match(text)
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")
    amount = float(match.group(1))
    unit = match.group(2) or "ms"
    return int(amount * _TIME_UNITS_MS[unit])


def format_time(ms: int) -> str:
    """Render milliseconds compactly: ``1500`` → ``"1s 500ms"``, ``60000`` → ``"1m"``."""
    if ms < 0:
        raise ValueError(f"Invalid time value: {ms!r}")
    if ms == 0:
        return "0ms"
    parts = []
    remaining = int(ms)
    for unit in ("d", "h", "m", "s", "ms"):
        size = _TIME_UNITS_MS[unit]
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)


# ── Content types ────────────────────────────────────────────────────────

_JSON_RE = re.compile(r"^application/(?:[\w.\-]+\+)?json", re.IGNORECASE)


def is_json_content_type(content_type: Optional[str]) -> bool:
    """``application/json`` and structured-suffix types like ``application/problem+json``."""
    return bool(content_type) and _JSON_RE.match(content_type) is not None


def is_text_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("text/")


def is_form_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith(
        "application/x-www-form-urlencoded"
    )


def is_multipart_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("multipart/form-data")


def parse_content_type(content_type: Optional[str]) -> Optional[Tuple[str, Dict[str, str]]]:
    """Split a Content-Type value into its media type and parameters.

    ``'application/json; charset="utf-8"'`` → ``('application/json', {'charset': 'utf-8'})``
    """
    if not content_type:
        return None
    media_type, _, rest = content_type.partition(";")
    params: Dict[str, str] = {}
    for part in rest.split(";"):
        key, sep, val = part.partition("=")
        if not sep:
            continue
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] == '"':
            val = val[1:-1]
        params[key.strip().lower()] = val
    return media_type.strip().lower(), params


def redact_headers(headers: Headers, names: Iterable[str]) -> Headers:
    """Return a copy of *headers* with the values of *names* masked."""
    masked = {name.lower() for name in names}
    return to_headers(
        [(key, "[REDACTED]" if key.lower() in masked else value) for key, value in headers.items()]
    )
