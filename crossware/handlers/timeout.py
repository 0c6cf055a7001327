"""Timeout handler.

Races the downstream continuation against a timer.  When the timer wins,
the handler short-circuits with a timeout reply.  The downstream task is
deliberately left running: it is not cancelled, so any side effects it
performs after the timeout still happen, and handlers it has not entered
yet are never entered because the run has already stopped.

The task lives on the event loop of the request.  Under Flask each async
hook runs on a loop of its own that asgiref closes when the hook returns,
cancelling whatever is still pending there, so an orphaned task does not
outlive its request on that host.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set, Union

from crossware.constants import (
    DEFAULT_TIMEOUT,
    DEFAULT_TIMEOUT_MESSAGE,
    DEFAULT_TIMEOUT_STATUS,
)
from crossware.context import Context
from crossware.engine.handler import CONTINUE, NextFunction, Outcome, Stop
from crossware.utils import parse_time

logger = logging.getLogger(__name__)


class TimeoutHandler:
    """Short-circuit with a timeout reply when downstream work is too slow.

    Parameters
    ----------
    duration:
        Milliseconds, or a duration string such as ``"30s"``.
    status:
        Reply status used on timeout.
    message:
        Error message placed in the JSON timeout body.
    on_timeout:
        Optional callback that writes a custom reply into ``ctx.response``
        instead of the default JSON body.
    """

    name = "timeout"

    def __init__(
        self,
        duration: Union[str, int, float] = DEFAULT_TIMEOUT,
        status: int = DEFAULT_TIMEOUT_STATUS,
        message: str = DEFAULT_TIMEOUT_MESSAGE,
        on_timeout: Optional[Callable[[Context], None]] = None,
    ) -> None:
        self.timeout_ms = parse_time(duration)
        self.status = status
        self.message = message
        self._on_timeout = on_timeout
        # Strong references to orphaned continuations so they run to completion.
        self._orphans: Set[asyncio.Task] = set()

    @property
    def pending_orphans(self) -> int:
        return len(self._orphans)

    async def handle(self, ctx: Context, call_next: NextFunction) -> Outcome:
        downstream = asyncio.ensure_future(call_next())
        done, _ = await asyncio.wait({downstream}, timeout=self.timeout_ms / 1000.0)

        if downstream in done:
            # Re-raises ordinary downstream errors unchanged.
            downstream.result()
            return CONTINUE

        logger.warning(
            "[%s] %s %s timed out after %dms.",
            ctx.meta.id,
            ctx.meta.method,
            ctx.meta.url.path,
            self.timeout_ms,
        )
        self._orphans.add(downstream)
        downstream.add_done_callback(self._reap_orphan)

        if self._on_timeout is not None:
            self._on_timeout(ctx)
        else:
            ctx.response.set_status(self.status).json(
                {"error": self.message, "code": "TIMEOUT_ERROR"}
            )
        return Stop(ctx.response.build())

    def _reap_orphan(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Orphaned continuation failed after timeout: %s: %s",
                type(exc).__name__,
                exc,
            )
