"""
Bounded in-memory cache for provider responses.

Entries are evicted in insertion order once the capacity is reached. A hit
does not refresh an entry, so this is FIFO rather than LRU.
"""

import logging
import threading
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)


class FifoCache:
    def __init__(self, capacity: int = 100, name: str = "cache"):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.name = name
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._write_lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss."""
        return self._entries.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._write_lock:
            if key in self._entries:
                self._entries[key] = value
                return
            if len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"{self.name}: evicted '{evicted}'")
            self._entries[key] = value

    def clear(self) -> None:
        with self._write_lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
