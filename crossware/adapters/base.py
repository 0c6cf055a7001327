"""Adapter protocol shared by every host-framework integration.

An adapter is three functions:

* ``to_canonical_request(native_request)`` → :class:`CanonicalRequest`
* ``to_native_reply(reply, native_target)`` writes the reply natively
* ``create_native_handler(run)`` wraps ``run(native_request, native_target)``
  into the host framework's handler calling convention

:func:`create_adapter` composes them into ``Pipeline -> native handler``.
The first two may be plain functions or coroutines.
"""

from __future__ import annotations

import codecs
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, Optional, Tuple, Union
from urllib.parse import urlencode

from crossware.constants import BODYLESS_METHODS, TRANSPORT_MANAGED_HEADERS
from crossware.engine.chain import Pipeline
from crossware.errors import AdapterError, CrosswareBaseError
from crossware.messages import CanonicalReply, CanonicalRequest
from crossware.utils import (
    is_form_content_type,
    is_json_content_type,
    is_multipart_content_type,
    is_text_content_type,
    parse_content_type,
)

if TYPE_CHECKING:
    from crossware.config.schema import AdapterSettings

logger = logging.getLogger(__name__)

RunFunction = Callable[[Any, Any], Awaitable[None]]


# ── Pass-through heuristic ───────────────────────────────────────────────


def has_output(reply: CanonicalReply) -> bool:
    """Return *True* when *reply* looks like real output.

    Real output means a non-200 status, a Content-Type header or a Location
    header.  A deliberate empty 200 reply is indistinguishable from "no
    handler produced anything" and is treated as the latter.
    """
    return (
        reply.status != 200
        or "content-type" in reply.headers
        or "location" in reply.headers
    )


def resolve_pass_through(
    pass_through: Optional[bool],
    settings: Optional[AdapterSettings],
    default: bool,
) -> bool:
    """Pick the pass-through mode: the explicit argument, then the
    ``adapter`` config section, then the host's own default.
    """
    if pass_through is not None:
        return pass_through
    if settings is not None and settings.pass_through is not None:
        return settings.pass_through
    return default


# ── Request-side helpers ─────────────────────────────────────────────────


def method_has_body(method: str) -> bool:
    return method.upper() not in BODYLESS_METHODS


def encode_parsed_body(parsed: Any, content_type: str) -> Optional[bytes]:
    """Re-encode a body the host framework already parsed.

    JSON content types are serialised with :mod:`json`, url-encoded forms
    are url-encoded, multipart forms are rebuilt with the boundary from
    *content_type*, strings are UTF-8 encoded and bytes pass through.

    Raises :class:`AdapterError` for any other representation.
    """
    if parsed is None:
        return None
    if isinstance(parsed, (bytes, bytearray)):
        return bytes(parsed)
    if is_json_content_type(content_type):
        return json.dumps(parsed, separators=(",", ":")).encode("utf-8")
    if is_form_content_type(content_type) and hasattr(parsed, "items"):
        return urlencode(list(_form_pairs(parsed))).encode("utf-8")
    if is_multipart_content_type(content_type) and hasattr(parsed, "items"):
        return _encode_multipart(parsed, content_type)
    if isinstance(parsed, str):
        return parsed.encode("utf-8")
    raise AdapterError(
        f"Unsupported parsed body type '{type(parsed).__name__}' for content type '{content_type}'"
    )


def _multi_items(form: Any) -> Iterator[Tuple[str, Any]]:
    # Starlette FormData, werkzeug MultiDict, aiohttp MultiDictProxy and plain dicts spell "all pairs" differently.
    if hasattr(form, "multi_items"):
        items = form.multi_items()
    else:
        try:
            items = form.items(multi=True)
        except TypeError:
            items = form.items()
    for key, value in items:
        if isinstance(value, (list, tuple)):
            for item in value:
                yield key, item
        else:
            yield key, value


def _form_pairs(form: Any) -> Iterator[Tuple[str, str]]:
    for key, value in _multi_items(form):
        yield key, str(value)


def _encode_multipart(form: Any, content_type: str) -> bytes:
    parsed = parse_content_type(content_type)
    boundary = parsed[1].get("boundary") if parsed else None
    if not boundary:
        raise AdapterError(f"Multipart content type without a boundary: '{content_type}'")
    delimiter = f"--{boundary}\r\n".encode("latin-1")
    chunks = []
    for name, value in _multi_items(form):
        filename = getattr(value, "filename", None)
        if filename is None:
            head = f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            data = str(value).encode("utf-8")
        else:
            # Upload objects: aiohttp FileField / Starlette UploadFile (.file), werkzeug FileStorage (.stream)
            stream = getattr(value, "stream", None) or value.file
            stream.seek(0)
            data = stream.read()
            part_type = getattr(value, "content_type", None) or "application/octet-stream"
            head = (
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                f"Content-Type: {part_type}\r\n\r\n"
            )
        chunks.append(delimiter + head.encode("utf-8") + data + b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode("latin-1"))
    return b"".join(chunks)


# ── Reply-side helpers ───────────────────────────────────────────────────


def reply_headers(reply: CanonicalReply) -> Iterator[Tuple[str, str]]:
    """Yield every reply header except those the host transport recomputes."""
    for name, value in reply.headers.items():
        if name.lower() in TRANSPORT_MANAGED_HEADERS:
            continue
        yield name, value


def reply_payload(reply: CanonicalReply) -> Tuple[str, Union[Any, str, bytes]]:
    """Decode the reply body according to its content type.

    Returns ``("json", obj)``, ``("text", str)`` or ``("bytes", bytes)``.
    An empty JSON body is reported as bytes so hosts send nothing.  Hosts
    encode ``str`` payloads as UTF-8, so text in any other charset is
    reported as bytes and sent exactly as built.
    """
    content_type = reply.content_type
    if is_json_content_type(content_type) and reply.body:
        return "json", reply.json()
    if is_text_content_type(content_type) and reply_charset(content_type) == "utf-8":
        return "text", reply.text()
    return "bytes", reply.body


def reply_charset(content_type: Optional[str]) -> Optional[str]:
    """Normalized codec name of the Content-Type charset (UTF-8 when absent).

    Returns *None* for a charset Python does not know.
    """
    parsed = parse_content_type(content_type)
    charset = parsed[1].get("charset", "utf-8") if parsed else "utf-8"
    try:
        return codecs.lookup(charset).name
    except LookupError:
        return None


class ReplySlot:
    """Native reply target for hosts whose handlers *return* the reply.

    ``to_native_reply`` stores the native response in :attr:`value` and the
    native handler returns it.
    """

    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value: Any = None


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# ── Adapter factory ──────────────────────────────────────────────────────


class Adapter:
    """Stateless mapping from a :class:`Pipeline` to a native handler."""

    def __init__(
        self,
        name: str,
        to_canonical_request: Callable[[Any], Any],
        to_native_reply: Callable[[CanonicalReply, Any], Any],
        create_native_handler: Callable[[RunFunction], Any],
    ) -> None:
        self.name = name
        self._to_canonical_request = to_canonical_request
        self._to_native_reply = to_native_reply
        self._create_native_handler = create_native_handler

    def __repr__(self) -> str:
        return f"Adapter(name={self.name!r})"

    async def translate_request(self, native_request: Any) -> CanonicalRequest:
        """Translate *native_request*, reporting host-side failures as :class:`AdapterError`."""
        try:
            return await maybe_await(self._to_canonical_request(native_request))
        except CrosswareBaseError:
            raise
        except Exception as exc:
            raise AdapterError(f"Cannot translate request: {exc}", self.name, exc) from exc

    async def write_reply(self, reply: CanonicalReply, native_target: Any) -> None:
        await maybe_await(self._to_native_reply(reply, native_target))

    def adapt(self, pipeline: Pipeline) -> Any:
        """Return the native handler that always finalizes the pipeline's reply."""

        async def run(native_request: Any, native_target: Any) -> None:
            request = await self.translate_request(native_request)
            reply = await pipeline.run(request)
            await self.write_reply(reply, native_target)

        logger.debug("Adapter '%s' wrapping %r.", self.name, pipeline)
        return self._create_native_handler(run)

    __call__ = adapt


def create_adapter(
    *,
    name: str,
    to_canonical_request: Callable[[Any], Any],
    to_native_reply: Callable[[CanonicalReply, Any], Any],
    create_native_handler: Callable[[RunFunction], Any],
) -> Adapter:
    """Build an adapter for a host framework.

    The returned :class:`Adapter` is callable: ``adapter(pipeline)`` returns
    the native handler.
    """
    return Adapter(name, to_canonical_request, to_native_reply, create_native_handler)


def to_handler(pipeline: Pipeline) -> Callable[[CanonicalRequest], Awaitable[CanonicalReply]]:
    """Expose *pipeline* directly as ``async (CanonicalRequest) -> CanonicalReply``."""

    async def handle(request: CanonicalRequest) -> CanonicalReply:
        return await pipeline.run(request)

    return handle
