"""Canonical, framework-neutral HTTP message model.

:class:`CanonicalRequest` is what every adapter produces and every handler
reads; it is immutable once created.  :class:`ReplyBuilder` is the mutable
reply accumulator owned by one request context, and :meth:`ReplyBuilder.build`
snapshots it into an immutable :class:`CanonicalReply` for the adapter.

Header multimaps reuse Starlette's case-insensitive ``Headers`` /
``MutableHeaders`` so that repeated header values survive translation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from starlette.datastructures import Headers, MutableHeaders

from crossware.constants import (
    DEFAULT_REDIRECT_STATUS,
    HTML_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
)

HeaderValue = Union[str, Iterable[str]]
HeadersLike = Union[Headers, Mapping[str, HeaderValue], Iterable[Tuple[str, str]], None]
BodyLike = Union[bytes, bytearray, str, None]


def to_headers(source: HeadersLike = None) -> Headers:
    """Build an immutable ``Headers`` multimap from common header shapes.

    Accepts an existing ``Headers`` (copied), a mapping whose values are a
    string or a list of strings, or an iterable of ``(name, value)`` pairs.
    """
    if source is None:
        return Headers(raw=[])
    if isinstance(source, Headers):
        return Headers(raw=list(source.raw))

    raw = []
    pairs = source.items() if isinstance(source, Mapping) else source
    for name, value in pairs:
        if value is None:
            continue
        values = [value] if isinstance(value, (str, bytes)) else list(value)
        for item in values:
            if isinstance(item, bytes):
                item = item.decode("latin-1")
            raw.append((name.lower().encode("latin-1"), str(item).encode("latin-1")))
    return Headers(raw=raw)


def _to_bytes(body: BodyLike) -> Optional[bytes]:
    if body is None:
        return None
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


# ── Request ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CanonicalRequest:
    """Read-only inbound request shared by every handler of one run.

    Attributes:
        url: Absolute request URL (scheme, host, path and query).
        method: HTTP method, normalised to upper case.
        headers: Case-insensitive header multimap.
        body: Raw body bytes, or ``None`` when the request carries none.
    """

    url: str
    method: str = "GET"
    headers: Headers = field(default_factory=lambda: Headers(raw=[]))
    body: Optional[bytes] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", to_headers(self.headers))
        if self.body is not None and not isinstance(self.body, bytes):
            object.__setattr__(self, "body", _to_bytes(self.body))

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def text(self, encoding: str = "utf-8") -> str:
        return (self.body or b"").decode(encoding)

    def json(self) -> Any:
        return json.loads(self.body or b"null")


# ── Reply ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CanonicalReply:
    """Immutable reply snapshot handed from the engine to an adapter."""

    status: int = 200
    headers: Headers = field(default_factory=lambda: Headers(raw=[]))
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)

    def json(self) -> Any:
        return json.loads(self.body)


class ReplyBuilder:
    """Mutable reply accumulator with a fluent surface.

    Every setter returns the builder itself::

        ctx.response.set_status(201).set_header("X-Custom", "1").json({"id": 7})

    No validation is applied beyond what the host transport enforces.
    """

    def __init__(self) -> None:
        self._status = 200
        self._headers = MutableHeaders()
        self._body: BodyLike = None

    def __repr__(self) -> str:
        return f"ReplyBuilder(status={self._status}, headers={self._headers.raw!r})"

    # ── Plain accessors ──────────────────────────────────────────────

    @property
    def status(self) -> int:
        return self._status

    @status.setter
    def status(self, code: int) -> None:
        self._status = code

    @property
    def headers(self) -> MutableHeaders:
        return self._headers

    @property
    def body(self) -> BodyLike:
        return self._body

    @body.setter
    def body(self, value: BodyLike) -> None:
        self._body = value

    # ── Fluent setters ───────────────────────────────────────────────

    def set_status(self, code: int) -> ReplyBuilder:
        self._status = code
        return self

    def set_header(self, name: str, value: str) -> ReplyBuilder:
        """Set *name*, replacing any existing values."""
        self._headers[name] = value
        return self

    def append_header(self, name: str, value: str) -> ReplyBuilder:
        """Add another value for *name*, keeping existing ones."""
        self._headers.append(name, value)
        return self

    def delete_header(self, name: str) -> ReplyBuilder:
        del self._headers[name]
        return self

    def json(self, data: Any) -> ReplyBuilder:
        self._headers["content-type"] = JSON_CONTENT_TYPE
        self._body = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        return self

    def text(self, content: str) -> ReplyBuilder:
        self._headers["content-type"] = TEXT_CONTENT_TYPE
        self._body = content
        return self

    def html(self, content: str) -> ReplyBuilder:
        self._headers["content-type"] = HTML_CONTENT_TYPE
        self._body = content
        return self

    def redirect(self, url: str, status: int = DEFAULT_REDIRECT_STATUS) -> ReplyBuilder:
        self._status = status
        self._headers["location"] = url
        self._body = None
        return self

    # ── Snapshot ─────────────────────────────────────────────────────

    def build(self) -> CanonicalReply:
        """Snapshot the current state.  Safe to call any number of times."""
        return CanonicalReply(
            status=self._status,
            headers=Headers(raw=list(self._headers.raw)),
            body=_to_bytes(self._body) or b"",
        )
