from __future__ import annotations

import hashlib
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, List, Optional, Tuple


class EmbeddingCache:
    """Bounded in-process cache of text -> embedding with a TTL.

    Keys are SHA-256 digests of the text. When full, the least recently used
    entry is evicted.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, List[float]]]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def get(self, text: str) -> Optional[List[float]]:
        if self.max_entries <= 0:
            return None
        key = self._key(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, vector = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return list(vector)

    def put(self, text: str, vector: List[float]) -> None:
        if self.max_entries <= 0:
            return
        key = self._key(text)
        with self._lock:
            self._entries[key] = (self._clock(), list(vector))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
