"""Pipeline: ordered handler list plus the onion-style driver.

Handlers run in registration order; each one decides whether downstream
handlers run by awaiting ``call_next()``.  A handler that returns
:class:`~crossware.engine.handler.Stop` ends the run: no handler that has
not been entered yet is entered, every pending ``call_next()`` returns the
same ``Stop`` outcome to its caller, and :meth:`Pipeline.run` returns the
captured reply instead of building the context's reply.

The stop is threaded back as a return value, never raised, so a handler's
``try/except`` around ``call_next()`` only ever sees real errors.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from crossware.context import Context, create_context
from crossware.engine.handler import (
    CONTINUE,
    Handler,
    Outcome,
    Stop,
    as_handler,
    call_hook,
)
from crossware.messages import CanonicalReply, CanonicalRequest

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Everything one pipeline run produced.

    Attributes:
        reply: The reply to hand to the adapter.
        context: The context the handlers operated on.
        stopped_by: Name of the handler that short-circuited, if any.
    """

    reply: CanonicalReply
    context: Context
    stopped_by: Optional[str] = None

    @property
    def short_circuited(self) -> bool:
        return self.stopped_by is not None


def _resolve_start(starting: concurrent.futures.Future, task: asyncio.Future) -> None:
    # Runs on the loop that owns *task*; waiters on other loops are woken thread-safely.
    if task.cancelled():
        starting.cancel()
    elif task.exception() is not None:
        starting.set_exception(task.exception())
    else:
        starting.set_result(None)


class Pipeline:
    """Ordered, appendable list of handlers and the driver that runs them.

    Usage::

        pipeline = Pipeline().use(RequestIdHandler(), hello)
        reply = await pipeline.run(CanonicalRequest("http://localhost/"))
    """

    def __init__(self, handlers: Tuple[Any, ...] = ()) -> None:
        self._handlers: List[Handler] = []
        self._started = False
        self._starting: Optional[concurrent.futures.Future] = None
        self._start_lock = threading.Lock()
        if handlers:
            self.use(*handlers)

    def __repr__(self) -> str:
        names = ", ".join(h.name for h in self._handlers)
        return f"Pipeline([{names}])"

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[Handler]:
        return iter(tuple(self._handlers))

    # ── Registration ─────────────────────────────────────────────────

    def use(self, *handlers: Any) -> Pipeline:
        """Append *handlers* (Handler objects or async callables) in order."""
        for candidate in handlers:
            handler = as_handler(candidate, len(self._handlers))
            self._handlers.append(handler)
            logger.debug(
                "Handler '%s' registered at position %d.",
                handler.name,
                len(self._handlers) - 1,
            )
        return self

    @property
    def handlers(self) -> Tuple[Handler, ...]:
        """Read-only snapshot of the registered handlers."""
        return tuple(self._handlers)

    def clone(self) -> Pipeline:
        """Return an independent pipeline seeded with the current handlers.

        The clone has its own lifecycle state, so its ``on_start`` hooks run
        again on its first run.
        """
        return Pipeline(tuple(self._handlers))

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Run every ``on_start`` hook once, in registration order.

        Concurrent first callers all await the same in-flight
        initialization, even when they run on different event loops (Flask
        runs each async hook on a loop of its own).  A failed initialization
        is reported to every waiter and retried on the next call.
        """
        if self._started:
            return
        with self._start_lock:
            starting = self._starting
            if starting is None or starting.cancelled():
                starting = self._starting = concurrent.futures.Future()
                task = asyncio.ensure_future(self._run_start_hooks(tuple(self._handlers)))
                task.add_done_callback(functools.partial(_resolve_start, starting))
        try:
            await asyncio.shield(asyncio.wrap_future(starting))
        except Exception:
            with self._start_lock:
                if self._starting is starting and starting.done():
                    self._starting = None
            raise
        self._started = True

    @staticmethod
    async def _run_start_hooks(handlers: Tuple[Handler, ...]) -> None:
        logger.debug("Running on_start hooks for %d handler(s).", len(handlers))
        for handler in handlers:
            await call_hook(getattr(handler, "on_start", None))

    async def stop(self) -> None:
        """Run every ``on_stop`` hook in registration order.

        All hooks run even if one fails; the first failure is re-raised
        afterwards.
        """
        first_exc: Optional[Exception] = None
        for handler in tuple(self._handlers):
            try:
                await call_hook(getattr(handler, "on_stop", None))
            except Exception as exc:
                logger.error("on_stop hook of handler '%s' failed: %s", handler.name, exc)
                if first_exc is None:
                    first_exc = exc
        if first_exc is not None:
            raise first_exc

    # ── Execution ────────────────────────────────────────────────────

    async def execute(
        self,
        request: CanonicalRequest,
        initial_state: Optional[Mapping[str, Any]] = None,
    ) -> RunResult:
        """Run the pipeline and return the reply along with its context."""
        await self.start()

        ctx = create_context(request, initial_state)
        handlers = tuple(self._handlers)
        index = 0
        captured: Optional[Stop] = None
        stopped_by: Optional[str] = None

        async def call_next() -> Outcome:
            nonlocal index, captured, stopped_by
            if captured is not None:
                return captured
            if index >= len(handlers):
                return CONTINUE

            handler = handlers[index]
            index += 1
            outcome = await handler.handle(ctx, call_next)

            if isinstance(outcome, Stop) and captured is None:
                captured = outcome
                stopped_by = handler.name
                logger.debug(
                    "[%s] Short-circuited by handler '%s' (status %d).",
                    ctx.meta.id,
                    handler.name,
                    outcome.reply.status,
                )
            return captured if captured is not None else CONTINUE

        await call_next()

        if captured is not None:
            reply = captured.reply
        else:
            reply = ctx.response.build()
        logger.debug(
            "[%s] %s %s completed with status %d in %.1fms.",
            ctx.meta.id,
            ctx.meta.method,
            ctx.meta.url.path,
            reply.status,
            ctx.meta.elapsed_ms,
        )
        return RunResult(reply=reply, context=ctx, stopped_by=stopped_by)

    async def run(
        self,
        request: CanonicalRequest,
        initial_state: Optional[Mapping[str, Any]] = None,
    ) -> CanonicalReply:
        """Run the pipeline for *request* and return the final reply.

        Errors raised by handlers propagate unchanged.
        """
        result = await self.execute(request, initial_state)
        return result.reply


def create_pipeline(*handlers: Any) -> Pipeline:
    """Create a pipeline, optionally pre-populated with *handlers*."""
    return Pipeline(handlers)


def pipe(*handlers: Any) -> Pipeline:
    """Functional spelling of ``Pipeline().use(*handlers)``."""
    return Pipeline().use(*handlers)
