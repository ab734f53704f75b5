"""
In-Memory LRU Cache with TTL Support.

Caches encoded synthesis results so repeated requests (same normalized
text, voice expression, speed, format and model) skip inference:
    - LRU eviction when capacity is reached
    - TTL expiration checked on access
    - Thread-safe operations
    - Hit / miss / expiration statistics

Keys are built by the service layer (see TTSService.cache_key), which
includes NORMALIZE_VERSION so a normalizer change never serves stale
audio.

Example:
    >>> from kokoro_ms.tts.cache import TinyLRUCache, CacheItem
    >>>
    >>> cache = TinyLRUCache(max_items=100, ttl_seconds=3600)
    >>> cache.set("key123", CacheItem(audio_bytes=b"...", fmt="wav",
    ...                               sample_rate=24000, n_samples=4800))
    >>> item, timing = cache.get("key123")
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional

from kokoro_ms.core.config import Defaults
from kokoro_ms.core.logging import get_logger, info, verbose
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.cache")


@dataclass
class CacheItem:
    """
    A cached, already encoded synthesis result.

    Attributes:
        audio_bytes: Encoded audio (WAV or MP3).
        fmt: "wav" or "mp3".
        sample_rate: Sample rate of the encoded audio.
        n_samples: Number of PCM samples before encoding.
        created_at: Unix timestamp when the item was cached.
    """
    audio_bytes: bytes
    fmt: str
    sample_rate: int
    n_samples: int
    created_at: float = field(default_factory=time.time)


class TinyLRUCache:
    """
    Thread-safe LRU cache with TTL support.

    All public methods take a single lock. Items older than
    ``ttl_seconds`` are dropped when accessed (0 disables the TTL).
    """

    def __init__(
        self,
        max_items: int = Defaults.CACHE_MAX_ITEMS,
        ttl_seconds: int = Defaults.CACHE_TTL_SECONDS,
    ):
        self.max_items = int(max_items)
        self.ttl_seconds = int(ttl_seconds)

        self._d: "OrderedDict[str, CacheItem]" = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0

    def _expired(self, item: CacheItem, now: float) -> bool:
        return self.ttl_seconds > 0 and now - item.created_at > self.ttl_seconds

    def get(self, key: str) -> tuple[Optional[CacheItem], Dict[str, float]]:
        """
        Look up ``key``.

        Returns:
            Tuple of (CacheItem or None, timing dict with 'cache_get').
        """
        timings: Dict[str, float] = {}

        with timeit("cache_get") as t:
            with self._lock:
                item = self._d.get(key)
                if item is None:
                    self._misses += 1
                elif self._expired(item, time.time()):
                    del self._d[key]
                    self._expirations += 1
                    self._misses += 1
                    verbose(_LOG, "expired", key=key[:8])
                    item = None
                else:
                    self._d.move_to_end(key)
                    self._hits += 1

        timings["cache_get"] = t.seconds
        if item is not None:
            info(_LOG, "hit", key=key[:8], fmt=item.fmt, seconds=round(timings["cache_get"], 5))
        return item, timings

    def set(self, key: str, item: CacheItem) -> Dict[str, float]:
        """Store ``item``, evicting least recently used entries over capacity."""
        timings: Dict[str, float] = {}

        with timeit("cache_set") as t:
            with self._lock:
                self._d[key] = item
                self._d.move_to_end(key)
                while len(self._d) > self.max_items:
                    self._d.popitem(last=False)

        timings["cache_set"] = t.seconds
        verbose(_LOG, "set", key=key[:8], bytes=len(item.audio_bytes), seconds=round(timings["cache_set"], 5))
        return timings

    def clear(self) -> int:
        with self._lock:
            count = len(self._d)
            self._d.clear()
            return count

    def cleanup_expired(self) -> int:
        """Drop every expired item; returns how many were removed."""
        if self.ttl_seconds <= 0:
            return 0

        now = time.time()
        with self._lock:
            expired = [k for k, item in self._d.items() if self._expired(item, now)]
            for k in expired:
                del self._d[k]
            self._expirations += len(expired)

        if expired:
            verbose(_LOG, "cleanup", removed=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._d),
                "max_items": self.max_items,
                "ttl_seconds": self.ttl_seconds,
                "expirations": self._expirations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, key: str) -> bool:
        """Membership without the TTL check; use get() for that."""
        with self._lock:
            return key in self._d
