"""Handler contract: outcomes, protocols and function wrappers.

A handler receives the request :class:`~crossware.context.Context` and a
``call_next`` coroutine function.  Awaiting ``call_next()`` runs every
downstream handler; code placed after it runs once they have all finished.
The handler then returns :data:`CONTINUE` or :class:`Stop` with the final
reply::

    async def stamp(ctx, call_next):
        await call_next()
        ctx.response.set_header("X-Served-By", "crossware")
        return CONTINUE
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from crossware.context import Context
from crossware.messages import CanonicalReply

# ── Outcomes ─────────────────────────────────────────────────────────────


class Continue:
    """Proceed normally.  Use the module-level :data:`CONTINUE` singleton."""

    __slots__ = ()
    stopped = False

    def __repr__(self) -> str:
        return "CONTINUE"

    def __reduce__(self) -> str:
        return "CONTINUE"


CONTINUE = Continue()


@dataclass(frozen=True)
class Stop:
    """End the run now and return *reply*, skipping handlers not yet entered."""

    reply: CanonicalReply

    @property
    def stopped(self) -> bool:
        return True


Outcome = Union[Continue, Stop]

NextFunction = Callable[[], Awaitable[Outcome]]
Hook = Callable[[], Union[None, Awaitable[None]]]


# ── Type protocols ───────────────────────────────────────────────────────


class HandlerFunc(Protocol):
    """Async callable usable directly as a handler body."""

    async def __call__(self, ctx: Context, call_next: NextFunction) -> Optional[Outcome]: ...


@runtime_checkable
class Handler(Protocol):
    """Named unit of request logic registered on a pipeline.

    ``on_start`` / ``on_stop`` are optional; the pipeline looks them up with
    ``getattr`` and accepts plain or async callables.
    """

    name: str

    async def handle(self, ctx: Context, call_next: NextFunction) -> Optional[Outcome]: ...


# ── Function wrappers ────────────────────────────────────────────────────


class FunctionHandler:
    """Adapt a plain async function (plus optional hooks) to :class:`Handler`."""

    def __init__(
        self,
        name: str,
        func: HandlerFunc,
        on_start: Optional[Hook] = None,
        on_stop: Optional[Hook] = None,
    ) -> None:
        self.name = name
        self._func = func
        self.on_start = on_start
        self.on_stop = on_stop

    def __repr__(self) -> str:
        return f"FunctionHandler(name={self.name!r})"

    async def handle(self, ctx: Context, call_next: NextFunction) -> Optional[Outcome]:
        return await self._func(ctx, call_next)


def create_handler(
    name: str,
    handler: HandlerFunc,
    on_start: Optional[Hook] = None,
    on_stop: Optional[Hook] = None,
) -> FunctionHandler:
    """Create a named handler with optional lifecycle hooks."""
    return FunctionHandler(name, handler, on_start=on_start, on_stop=on_stop)


def wrap_handler(name: str) -> Callable[[HandlerFunc], FunctionHandler]:
    """Decorator form of :func:`create_handler` for inline definitions::

        @wrap_handler("log-time")
        async def log_time(ctx, call_next):
            await call_next()
            logger.info("took %.1fms", ctx.meta.elapsed_ms)
            return CONTINUE
    """

    def _decorate(func: HandlerFunc) -> FunctionHandler:
        return FunctionHandler(name, func)

    return _decorate


def as_handler(candidate: Any, index: int) -> Handler:
    """Normalise *candidate* into a :class:`Handler`.

    Bare async callables become ``anonymous-<index>`` function handlers.
    """
    if isinstance(candidate, Handler):
        return candidate
    if callable(candidate):
        return FunctionHandler(f"anonymous-{index}", candidate)
    raise TypeError(
        f"Expected a handler or an async callable, got {type(candidate).__name__}"
    )


async def call_hook(hook: Optional[Hook]) -> None:
    """Invoke a lifecycle hook that may be sync or async."""
    if hook is None:
        return
    result = hook()
    if inspect.isawaitable(result):
        await result
