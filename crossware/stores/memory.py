"""In-memory TTL store with an optional background sweeper."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_CLEANUP_INTERVAL: float = 60.0  # seconds between sweeps


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: Optional[float]  # time.monotonic() deadline, None = never

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() > self.expires_at


class MemoryStore(Generic[T]):
    """Single-process key/value store implementing :class:`~crossware.stores.Store`.

    Entries expire lazily on read; :meth:`start` additionally runs a
    background task that sweeps expired entries.  Concurrent handlers on one
    event loop may share an instance, but multi-key updates are not atomic.

    Parameters
    ----------
    cleanup_interval:
        How often (in seconds) the sweeper runs once started.
    """

    def __init__(self, cleanup_interval: float = _DEFAULT_CLEANUP_INTERVAL) -> None:
        self._entries: Dict[str, _Entry[T]] = {}
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background sweeper (idempotent)."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="memory-store-cleanup")
            logger.debug("MemoryStore sweeper started (interval=%.1fs).", self._cleanup_interval)

    async def close(self) -> None:
        """Stop the sweeper and drop every entry."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        self._entries.clear()

    # ── Store contract ───────────────────────────────────────────────

    async def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired:
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store *value*; *ttl* is in milliseconds, ``None`` or ``<= 0`` means no expiry."""
        expires_at = time.monotonic() + ttl / 1000.0 if ttl is not None and ttl > 0 else None
        self._entries[key] = _Entry(value, expires_at)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    # ── Extras ───────────────────────────────────────────────────────

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet swept."""
        return len(self._entries)

    def sweep(self) -> int:
        """Remove expired entries now and return how many were removed."""
        expired = [key for key, entry in self._entries.items() if entry.expired]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._cleanup_interval)
                removed = self.sweep()
                if removed:
                    logger.debug(
                        "MemoryStore sweep: removed %d expired entr(y/ies), %d remaining.",
                        removed,
                        len(self._entries),
                    )
        except asyncio.CancelledError:
            logger.debug("MemoryStore sweeper cancelled.")
            raise
