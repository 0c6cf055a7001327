"""aiohttp integration: a ``web.middleware`` and a plain request handler."""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from crossware.adapters.base import (
    ReplySlot,
    RunFunction,
    create_adapter,
    encode_parsed_body,
    has_output,
    method_has_body,
    reply_headers,
    reply_payload,
    resolve_pass_through,
)
from crossware.config.schema import AdapterSettings
from crossware.engine.chain import Pipeline
from crossware.messages import CanonicalReply, CanonicalRequest, to_headers

logger = logging.getLogger(__name__)

AiohttpHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_compact_dumps = functools.partial(json.dumps, separators=(",", ":"), ensure_ascii=False)


async def to_canonical_request(request: web.Request) -> CanonicalRequest:
    """Translate an aiohttp request.

    ``request.read()`` caches the payload, so bodies already read by other
    middleware are still available.  A form parsed from a consumed stream
    is re-encoded.
    """
    body: Optional[bytes] = None
    if method_has_body(request.method):
        body = await request.read()
        if not body:
            parsed = getattr(request, "_post", None)
            if parsed:
                body = encode_parsed_body(parsed, request.headers.get("Content-Type", ""))
    return CanonicalRequest(
        url=str(request.url),
        method=request.method,
        headers=to_headers(list(request.headers.items())),
        body=body or None,
    )


def build_web_response(reply: CanonicalReply) -> web.Response:
    kind, payload = reply_payload(reply)
    if kind == "json":
        response = web.json_response(payload, status=reply.status, dumps=_compact_dumps)
    elif kind == "text":
        response = web.Response(text=payload, status=reply.status)
    else:
        response = web.Response(body=payload, status=reply.status)
    response.headers.popall("Content-Type", None)
    for name, value in reply_headers(reply):
        response.headers.add(name, value)
    return response


def to_native_reply(reply: CanonicalReply, slot: ReplySlot) -> None:
    slot.value = build_web_response(reply)


def _create_handler(run: RunFunction) -> AiohttpHandler:
    async def crossware_handler(request: web.Request) -> web.StreamResponse:
        slot = ReplySlot()
        await run(request, slot)
        return slot.value

    return crossware_handler


aiohttp_adapter = create_adapter(
    name="aiohttp",
    to_canonical_request=to_canonical_request,
    to_native_reply=to_native_reply,
    create_native_handler=_create_handler,
)


def aiohttp_handler(pipeline: Pipeline) -> AiohttpHandler:
    """Route handler answering every request with the pipeline's reply."""
    return aiohttp_adapter(pipeline)


def to_aiohttp(
    pipeline: Pipeline,
    pass_through: Optional[bool] = None,
    *,
    settings: Optional[AdapterSettings] = None,
) -> Any:
    """Return a ``web.middleware`` running *pipeline* before the route handler::

        app = web.Application(middlewares=[to_aiohttp(pipeline)])

    *pass_through* defaults to ``settings.pass_through`` and then to *True*.
    """
    pass_through = resolve_pass_through(pass_through, settings, True)

    @web.middleware
    async def crossware_middleware(request: web.Request, handler: AiohttpHandler) -> web.StreamResponse:
        canonical = await aiohttp_adapter.translate_request(request)
        reply = await pipeline.run(canonical)
        if pass_through and not has_output(reply):
            logger.debug("No pipeline output for %s %s; passing through.", request.method, request.path)
            return await handler(request)
        return build_web_response(reply)

    return crossware_middleware
