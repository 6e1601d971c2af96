"""
Content-addressed response cache.

Entries are keyed by a fingerprint of (endpoint, model, payload) and expire
lazily on read. When full, the oldest-inserted entry is evicted; reads do not
refresh an entry's position, so this is insertion-order eviction, not LRU.
"""
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .upstream import GenerationResult

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: GenerationResult
    expires_at: float


def normalize_payload(value: Any, _active: Optional[set] = None) -> Any:
    """Sort mapping keys recursively and drop self-referential members.

    `_active` holds the ids of containers on the current path; a container that
    reappears inside itself is elided. Shared (non-cyclic) references are kept.
    """
    if _active is None:
        _active = set()

    if isinstance(value, dict):
        marker = id(value)
        if marker in _active:
            return None
        _active.add(marker)
        try:
            normalized = {}
            for key in sorted(value, key=str):
                item = value[key]
                if isinstance(item, (dict, list, tuple)) and id(item) in _active:
                    continue
                normalized[str(key)] = normalize_payload(item, _active)
            return normalized
        finally:
            _active.discard(marker)

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in _active:
            return None
        _active.add(marker)
        try:
            return [
                normalize_payload(item, _active)
                for item in value
                if not (isinstance(item, (dict, list, tuple)) and id(item) in _active)
            ]
        finally:
            _active.discard(marker)

    return value


def fingerprint(endpoint: str, model: str, payload: Any) -> str:
    """Deterministic cache key, independent of payload key order."""
    document = json.dumps(
        [endpoint, model, normalize_payload(payload)],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )
    return hashlib.sha256(document.encode("utf-8")).hexdigest()


class ResponseCache:
    """Bounded TTL cache of GenerationResult objects."""

    def __init__(self, max_entries: int = 200, clock: Callable[[], float] = time.time):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def lookup(self, key: str) -> Optional[GenerationResult]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return entry.value

    def store(self, key: str, value: GenerationResult, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return

        expires_at = self._clock() + ttl_seconds
        existing = self._entries.get(key)
        if existing is not None:
            # Overwrite in place; insertion position is unchanged
            existing.value = value
            existing.expires_at = expires_at
            return

        while len(self._entries) >= self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted cache entry {evicted_key[:12]}")

        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "maxEntries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
