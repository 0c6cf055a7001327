"""Centralised error handling.

Placed early in a pipeline, :class:`ErrorHandler` wraps ``call_next()`` in
``try/except`` and turns downstream exceptions into replies.  Short-circuit
outcomes are return values, so they pass straight through it.
"""

from __future__ import annotations

import html
import logging
import traceback
from typing import Any, Callable, Dict, Literal, Mapping, Optional

from crossware.context import Context
from crossware.engine.handler import CONTINUE, NextFunction, Outcome, Stop
from crossware.errors import (
    AuthenticationError,
    HandlerError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ErrorFormat = Literal["json", "html", "text"]
ErrorCallback = Callable[[Exception, Context], None]


class ErrorHandler:
    """Convert downstream exceptions into error replies.

    Parameters
    ----------
    catch_all:
        Also convert exceptions that are not :class:`HandlerError` (as 500).
        When *False* they are re-raised.
    expose:
        Include messages of unexpected errors and tracebacks in replies.
    log:
        Log every caught error.
    format:
        Reply body format: ``"json"``, ``"html"`` or ``"text"``.
    handlers:
        Callbacks keyed by exception class name that write a custom reply.
    transform:
        Returns extra fields merged into the error body.
    """

    name = "error-handler"

    def __init__(
        self,
        catch_all: bool = True,
        expose: bool = False,
        log: bool = True,
        format: ErrorFormat = "json",
        handlers: Optional[Mapping[str, ErrorCallback]] = None,
        transform: Optional[Callable[[Exception], Dict[str, Any]]] = None,
    ) -> None:
        self.catch_all = catch_all
        self.expose = expose
        self.log = log
        self.format = format
        self._handlers = dict(handlers or {})
        self._transform = transform

    async def handle(self, ctx: Context, call_next: NextFunction) -> Outcome:
        try:
            await call_next()
            return CONTINUE
        except Exception as exc:
            if self.log:
                logger.error(
                    "[%s] %s %s failed: %s: %s",
                    ctx.meta.id,
                    ctx.meta.method,
                    ctx.meta.url.path,
                    type(exc).__name__,
                    exc,
                    exc_info=self.expose,
                )

            custom = self._handlers.get(type(exc).__name__)
            if custom is not None:
                custom(exc, ctx)
                return Stop(ctx.response.build())

            if isinstance(exc, HandlerError):
                self._send(ctx, exc.status_code, self._known_error_body(ctx, exc))
                return Stop(ctx.response.build())

            if not self.catch_all:
                raise

            body: Dict[str, Any] = {
                "error": str(exc) if self.expose else "Internal Server Error",
                "code": "INTERNAL_ERROR",
                "status": 500,
            }
            if self.expose:
                body["stack"] = traceback.format_exc()
            if self._transform is not None:
                body.update(self._transform(exc))
            self._send(ctx, 500, body)
            return Stop(ctx.response.build())

    def _known_error_body(self, ctx: Context, exc: HandlerError) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": exc.message, "code": exc.code}
        if isinstance(exc, ValidationError):
            body["error"] = "Validation failed"
            body["errors"] = exc.errors
        elif isinstance(exc, RateLimitError):
            body["retry_after"] = exc.retry_after
            ctx.response.set_header("Retry-After", str(exc.retry_after))
        elif isinstance(exc, RequestTimeoutError):
            body["duration"] = exc.duration
        elif isinstance(exc, AuthenticationError):
            ctx.response.set_header("WWW-Authenticate", "Bearer")

        if self.expose:
            body["stack"] = traceback.format_exc()
        if self._transform is not None:
            body.update(self._transform(exc))
        return body

    def _send(self, ctx: Context, status: int, body: Dict[str, Any]) -> None:
        ctx.response.set_status(status)
        if self.format == "html":
            stack = f"<pre>{html.escape(body['stack'])}</pre>" if body.get("stack") else ""
            ctx.response.html(
                "<!DOCTYPE html>\n"
                f"<html><head><title>Error {status}</title></head>"
                f"<body><h1>Error {status}</h1><p>{html.escape(str(body['error']))}</p>"
                f"{stack}</body></html>"
            )
        elif self.format == "text":
            text = f"Error: {body['error']}"
            if body.get("code"):
                text += f"\nCode: {body['code']}"
            if body.get("stack"):
                text += f"\n\nStack:\n{body['stack']}"
            ctx.response.text(text)
        else:
            ctx.response.json(body)
