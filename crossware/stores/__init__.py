"""Key/value stores consumed by stateful handlers (rate limits, caches)."""

from typing import Optional, Protocol, TypeVar, runtime_checkable

from crossware.stores.memory import MemoryStore

T = TypeVar("T")


@runtime_checkable
class Store(Protocol[T]):
    """Async key/value contract.  ``ttl`` is in milliseconds."""

    async def get(self, key: str) -> Optional[T]: ...

    async def set(self, key: str, value: T, ttl: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def clear(self) -> None: ...


__all__ = ["MemoryStore", "Store"]
