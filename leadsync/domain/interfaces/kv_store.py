"""
Key-Value Store Interface
Abstract backing store for the job queue
"""
from abc import ABC, abstractmethod
from typing import Any, List, Optional


class KeyValueStore(ABC):
    """
    Abstract backing store used by the JobQueue.

    Values are JSON-compatible. Implementations raise StoreError when the
    store itself fails and StoreLimitExceededError when its request quota is
    exhausted, so the queue can tell store outages apart from handler errors.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value stored under key, or None if missing/expired"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store value under key, expiring after ttl_seconds if given"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored"""
        pass

    @abstractmethod
    async def list_push(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Append value to the list under key, refreshing its TTL"""
        pass

    @abstractmethod
    async def list_remove(self, key: str, value: str) -> None:
        """Remove every occurrence of value from the list under key"""
        pass

    @abstractmethod
    async def list_items(self, key: str) -> List[str]:
        """Return the list under key in insertion order"""
        pass

    async def close(self) -> None:
        """Release resources"""
        pass
