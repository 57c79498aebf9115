"""Abstract durable key/value storage used by the credential store and the sync queue."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable


class KeyValueStore(ABC):
    """String-valued durable storage. Every write replaces the whole value of a key."""

    #: ``True`` when values are encrypted at rest by the backend.
    secure: bool = False
    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def save(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            await self.delete(key)
