"""Thread-safe store of proxied responses that evicts the least recently used."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

MAX_SIZE = 200 * (1 << 20)
MAX_ELEMENT_SIZE = 10 * (1 << 20)
# Fixed bookkeeping cost charged for every entry on top of its data and key.
ELEMENT_OVERHEAD = 40

log = logging.getLogger(__name__)


@dataclass
class CacheElement:
    """A cached response together with the request that produced it."""

    url: bytes
    data: bytes
    lru_time: float

    @property
    def size(self) -> int:
        """Bytes this entry counts against the cache's capacity."""
        return len(self.data) + 1 + len(self.url) + ELEMENT_OVERHEAD


class LRUCache:
    """Response cache keyed by the raw request, bounded in total size."""

    def __init__(
        self,
        max_size: int = MAX_SIZE,
        max_element_size: int = MAX_ELEMENT_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_size = max_size
        self.max_element_size = max_element_size
        self._clock = clock
        # Newest entries first.
        self._elements: list[CacheElement] = []
        self._size = 0
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        """Total bytes currently charged against the capacity."""
        with self._lock:
            return self._size

    def find(self, url: bytes) -> CacheElement | None:
        """Return the entry for ``url`` and mark it as just used, or ``None``."""
        with self._lock:
            element = next((e for e in self._elements if e.url == url), None)
            if element is None:
                log.debug("url not found")
                return None
            element.lru_time = self._clock()
            log.debug("url found")
            return element

    def add(self, data: bytes, url: bytes) -> bool:
        """Store ``data`` under ``url``, evicting old entries to make room.

        Returns ``False`` when the entry is too large to be cached at all.
        """
        element = CacheElement(url=bytes(url), data=bytes(data), lru_time=self._clock())
        with self._lock:
            if element.size > self.max_element_size or element.size > self.max_size:
                return False
            while self._elements and self._size + element.size > self.max_size:
                self._evict()
            self._elements.insert(0, element)
            self._size += element.size
            return True

    def remove_oldest(self) -> CacheElement | None:
        """Evict and return the least recently used entry, if there is one."""
        with self._lock:
            return self._evict()

    def _evict(self) -> CacheElement | None:
        if not self._elements:
            return None
        index, _ = min(enumerate(self._elements), key=lambda pair: pair[1].lru_time)
        element = self._elements.pop(index)
        self._size -= element.size
        return element

    def __len__(self) -> int:
        with self._lock:
            return len(self._elements)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return any(e.url == url for e in self._elements)