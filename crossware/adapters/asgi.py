"""Pure ASGI integration.

:class:`PipelineMiddleware` works in two modes:

* wrapping an ASGI application: the pipeline runs first and the request
  continues to the wrapped app when the pipeline produced no output;
* endpoint mode (``app=None``): the pipeline answers every HTTP request
  and drives its own ``on_start``/``on_stop`` hooks from the ASGI
  lifespan protocol.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional

from starlette.datastructures import URL
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from crossware.adapters.base import (
    RunFunction,
    create_adapter,
    has_output,
    method_has_body,
    resolve_pass_through,
)
from crossware.adapters.starlette import build_response
from crossware.config.schema import AdapterSettings
from crossware.engine.chain import Pipeline
from crossware.errors import AdapterError
from crossware.messages import CanonicalReply, CanonicalRequest, to_headers

logger = logging.getLogger(__name__)


class ASGIRequest(NamedTuple):
    scope: Scope
    body: bytes


class ASGITarget(NamedTuple):
    scope: Scope
    receive: Receive
    send: Send


async def read_body(receive: Receive) -> bytes:
    """Drain ``http.request`` messages from *receive*.

    Raises :class:`AdapterError` if the client disconnects first.
    """
    chunks = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise AdapterError("Client disconnected before the request body was read", "asgi")
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            return b"".join(chunks)


def replay_receive(body: bytes, receive: Receive) -> Receive:
    """Return a ``receive`` callable that first replays *body* in one message."""
    replayed = False

    async def _receive() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


def to_canonical_request(native: ASGIRequest) -> CanonicalRequest:
    scope = native.scope
    method = scope.get("method", "GET")
    return CanonicalRequest(
        url=str(URL(scope=scope)),
        method=method,
        headers=to_headers(
            [(k.decode("latin-1"), v.decode("latin-1")) for k, v in scope.get("headers", [])]
        ),
        body=native.body if method_has_body(method) and native.body else None,
    )


async def to_native_reply(reply: CanonicalReply, target: ASGITarget) -> None:
    response = build_response(reply)
    await response(target.scope, target.receive, target.send)


def _create_asgi_app(run: RunFunction) -> ASGIApp:
    async def crossware_app(scope: Scope, receive: Receive, send: Send) -> None:
        body = await read_body(receive)
        await run(ASGIRequest(scope, body), ASGITarget(scope, receive, send))

    return crossware_app


asgi_adapter = create_adapter(
    name="asgi",
    to_canonical_request=to_canonical_request,
    to_native_reply=to_native_reply,
    create_native_handler=_create_asgi_app,
)


class PipelineMiddleware:
    """ASGI middleware running a pipeline for every HTTP request.

    Parameters
    ----------
    app:
        The downstream ASGI application, or *None* for endpoint mode.
    pipeline:
        The pipeline to run.
    pass_through:
        Continue to *app* when the pipeline produced no output.  Ignored
        in endpoint mode.
    """

    def __init__(
        self,
        app: Optional[ASGIApp],
        pipeline: Pipeline,
        pass_through: bool = True,
    ) -> None:
        self.app = app
        self.pipeline = pipeline
        self.pass_through = pass_through
        self._endpoint = asgi_adapter(pipeline)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        scope_type = scope["type"]
        if scope_type != "http":
            if self.app is not None:
                await self.app(scope, receive, send)
            elif scope_type == "lifespan":
                await self._lifespan(receive, send)
            else:
                raise AdapterError(f"Unsupported ASGI scope type '{scope_type}'", "asgi")
            return

        if self.app is None:
            await self._endpoint(scope, receive, send)
            return

        body = await read_body(receive)
        request = await asgi_adapter.translate_request(ASGIRequest(scope, body))
        reply = await self.pipeline.run(request)
        if self.pass_through and not has_output(reply):
            logger.debug("No pipeline output for %s %s; passing through.", request.method, scope.get("path"))
            await self.app(scope, replay_receive(body, receive), send)
            return
        await asgi_adapter.write_reply(reply, ASGITarget(scope, receive, send))

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    await self.pipeline.start()
                except Exception as exc:
                    logger.error("Pipeline startup failed: %s", exc)
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                try:
                    await self.pipeline.stop()
                except Exception as exc:
                    logger.error("Pipeline shutdown failed: %s", exc)
                    await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return


def to_asgi(
    pipeline: Pipeline,
    app: Optional[ASGIApp] = None,
    pass_through: Optional[bool] = None,
    *,
    settings: Optional[AdapterSettings] = None,
) -> PipelineMiddleware:
    """Wrap *app* with *pipeline*, or serve the pipeline alone when *app* is None.

    *pass_through* defaults to ``settings.pass_through`` and then to *True*.
    """
    return PipelineMiddleware(app, pipeline, pass_through=resolve_pass_through(pass_through, settings, True))
