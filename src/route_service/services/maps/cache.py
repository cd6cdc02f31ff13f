"""In-process TTL cache for geocoding, directions and distance-matrix lookups."""

from __future__ import annotations

import copy
import fnmatch
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from ...models.domain import Address, Location

GEOCODE_PREFIX = "geocode:"
DIRECTIONS_PREFIX = "directions:"
DISTANCE_MATRIX_PREFIX = "distance_matrix:"
ROUTE_PREFIX = "route:"
ROUTE_MAP_PREFIX = "route_map:"
TURN_BY_TURN_PREFIX = "turn_by_turn:"

COORDINATE_PRECISION = 6

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


def _digest(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def coordinate_key(prefix: str, *groups: Any) -> str:
    """Build a cache key from locations rounded to six decimal places.

    Each positional group is either a single Location or a sequence of them;
    groups are separated so that (origins, destinations) pairs with the same
    flattened points do not collide.
    """
    parts: list[str] = []
    for group in groups:
        locations = [group] if isinstance(group, Location) else list(group or [])
        parts.append(
            ";".join(
                f"{lat:.{COORDINATE_PRECISION}f},{lon:.{COORDINATE_PRECISION}f}"
                for lat, lon in (location.rounded(COORDINATE_PRECISION) for location in locations)
            )
        )
    return f"{prefix}{_digest('|'.join(parts))}"


def normalize_address(address: Address | str) -> str:
    text = address.to_query() if isinstance(address, Address) else address
    return " ".join(text.lower().replace(",", " ").split())


def address_key(address: Address | str) -> str:
    return f"{GEOCODE_PREFIX}{_digest(normalize_address(address))}"


@dataclass(slots=True)
class CacheEntry:
    value: Any
    expires_at: float


class GeoCache:
    """Thread-safe key/value cache with per-entry TTL.

    Overlapping writes are last-write-wins; concurrent misses on the same key
    may each call the fetch function. Every key carries a generation that
    delete() and invalidate() bump, so a compute_or_fetch() whose fetch
    overlapped an invalidation does not write its result back.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if entry.expires_at <= now:
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        entry = CacheEntry(value=copy.deepcopy(value), expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def _bump(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def delete(self, key: str) -> bool:
        with self._lock:
            self._bump(key)
            return self._entries.pop(key, None) is not None

    def invalidate(self, pattern: str) -> int:
        """Drop every key matching a glob pattern such as ``directions:*``."""
        with self._lock:
            doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._entries[key]
            for key in set(doomed).union(fnmatch.filter(list(self._generations), pattern)):
                self._bump(key)
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries matching '{pattern}'")
        return len(doomed)

    def compute_or_fetch(self, key: str, ttl_seconds: float, fetch: Callable[[], T]) -> T:
        """Return the cached value for key, populating it from fetch() on a miss.

        Errors raised by fetch propagate and leave the cache untouched. If the
        key is deleted or invalidated while fetch runs, the result is returned
        but not stored.
        """
        with self._lock:
            generation = self._generations.setdefault(key, 0)
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            logger.debug(f"Cache hit for {key}")
            return cached
        logger.debug(f"Cache miss for {key}")
        value = fetch()
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        entry = CacheEntry(value=copy.deepcopy(value), expires_at=self._clock() + ttl_seconds)
        with self._lock:
            if self._generations.get(key, 0) != generation:
                logger.debug(f"Discarding fetched value for {key}: invalidated during fetch")
                return value
            self._entries[key] = entry
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for key in self._generations:
                self._bump(key)

    def stats(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            live = sum(1 for entry in self._entries.values() if entry.expires_at > now)
        return {"hits": self.hits, "misses": self.misses, "size": live}

    def __len__(self) -> int:
        return self.stats()["size"]

