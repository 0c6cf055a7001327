"""Correlation-id handler.

Propagates an incoming correlation header into ``ctx.meta.id`` (the one
metadata field that stays writable after context creation) and echoes the
id back on the reply.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from crossware.constants import DEFAULT_REQUEST_ID_HEADER
from crossware.context import Context, generate_request_id
from crossware.engine.handler import CONTINUE, NextFunction, Outcome

logger = logging.getLogger(__name__)


class RequestIdHandler:
    """Reuse or generate a request id and expose it on the reply.

    Parameters
    ----------
    header:
        Request/response header carrying the id.
    generator:
        Called to mint an id when the request has none.
    set_response_header:
        Write the id to the reply under *header*.
    """

    name = "request-id"

    def __init__(
        self,
        header: str = DEFAULT_REQUEST_ID_HEADER,
        generator: Optional[Callable[[], str]] = None,
        set_response_header: bool = True,
    ) -> None:
        self.header = header
        self._generator = generator or generate_request_id
        self.set_response_header = set_response_header

    async def handle(self, ctx: Context, call_next: NextFunction) -> Outcome:
        existing = ctx.request.headers.get(self.header)
        if existing:
            ctx.meta.id = existing
            request_id = existing
        else:
            request_id = self._generator()
            logger.debug("[%s] No %s header; using generated id %s.", ctx.meta.id, self.header, request_id)
            ctx.meta.id = request_id

        if self.set_response_header:
            ctx.response.set_header(self.header, request_id)

        await call_next()
        return CONTINUE
