"""
In-Memory Key-Value Store
Process-local store used when no Redis URL is configured
"""
import copy
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from leadsync.domain.interfaces.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """
    KeyValueStore held in a dict, with TTLs evaluated lazily on read.

    State is lost on restart, so it only suits single-process development
    and tests. `fail_with` makes every call raise the given exception, which
    is how store outages are simulated.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._values: Dict[str, Tuple[Any, Optional[float]]] = {}
        self.fail_with: Optional[Exception] = None
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with

    def _expires_at(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def _live(self, key: str) -> Optional[Any]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Optional[Any]:
        self._check()
        return copy.deepcopy(self._live(key))

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self._check()
        self._values[key] = (copy.deepcopy(value), self._expires_at(ttl_seconds))

    async def delete(self, key: str) -> None:
        self._check()
        self._values.pop(key, None)

    async def list_push(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._check()
        items = list(self._live(key) or [])
        items.append(value)
        self._values[key] = (items, self._expires_at(ttl_seconds))

    async def list_remove(self, key: str, value: str) -> None:
        self._check()
        items = self._live(key)
        if items is None:
            return
        _, expires_at = self._values[key]
        self._values[key] = ([item for item in items if item != value], expires_at)

    async def list_items(self, key: str) -> List[str]:
        self._check()
        return list(self._live(key) or [])
