"""Host-framework adapters.

The adapter protocol lives in :mod:`crossware.adapters.base`.  Concrete
integrations are imported from their own modules so that only the host
framework in use gets imported::

    from crossware.adapters.starlette import to_starlette
    from crossware.adapters.aiohttp import to_aiohttp
"""

from crossware.adapters.base import Adapter, ReplySlot, create_adapter, has_output, to_handler

__all__ = [
    "Adapter",
    "ReplySlot",
    "create_adapter",
    "has_output",
    "to_handler",
]
