import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.route_service.models.domain import Location
from src.route_service.services.maps.cache import (
    DIRECTIONS_PREFIX,
    DISTANCE_MATRIX_PREFIX,
    GeoCache,
    address_key,
    coordinate_key,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = GeoCache(clock=clock)
    cache.set("geocode:abc", {"lat": 1.0}, ttl_seconds=60)

    clock.now += 59
    assert cache.get("geocode:abc") == {"lat": 1.0}

    clock.now += 1
    assert cache.get("geocode:abc") is None
    assert len(cache) == 0


def test_set_rejects_non_positive_ttl() -> None:
    cache = GeoCache()
    with pytest.raises(ValueError):
        cache.set("route:1", "value", ttl_seconds=0)


def test_get_returns_copies() -> None:
    cache = GeoCache()
    cache.set("distance_matrix:x", [[0.0, 1.0], [1.0, 0.0]], ttl_seconds=60)

    first = cache.get("distance_matrix:x")
    first[0][1] = 99.0

    assert cache.get("distance_matrix:x") == [[0.0, 1.0], [1.0, 0.0]]


def test_invalidate_matches_glob_pattern() -> None:
    cache = GeoCache()
    cache.set(f"{DIRECTIONS_PREFIX}a", 1, 60)
    cache.set(f"{DIRECTIONS_PREFIX}b", 2, 60)
    cache.set(f"{DISTANCE_MATRIX_PREFIX}a", 3, 60)
    cache.set("route:a", 4, 60)

    removed = cache.invalidate(f"{DIRECTIONS_PREFIX}*")

    assert removed == 2
    assert cache.get(f"{DIRECTIONS_PREFIX}a") is None
    assert cache.get(f"{DISTANCE_MATRIX_PREFIX}a") == 3
    assert cache.get("route:a") == 4


def test_compute_or_fetch_populates_once() -> None:
    cache = GeoCache()
    calls = []

    def fetch() -> str:
        calls.append(1)
        return "value"

    assert cache.compute_or_fetch("route:1", 60, fetch) == "value"
    assert cache.compute_or_fetch("route:1", 60, fetch) == "value"
    assert len(calls) == 1
    assert cache.stats()["hits"] == 1


def test_compute_or_fetch_does_not_cache_failures() -> None:
    cache = GeoCache()

    def failing() -> str:
        raise RuntimeError("oracle down")

    with pytest.raises(RuntimeError):
        cache.compute_or_fetch("geocode:x", 60, failing)

    assert cache.get("geocode:x") is None
    assert cache.compute_or_fetch("geocode:x", 60, lambda: "recovered") == "recovered"


def test_fetch_overlapping_a_delete_is_not_stored() -> None:
    cache = GeoCache()
    fetching = threading.Event()
    release = threading.Event()
    results = []

    def slow_fetch() -> str:
        fetching.set()
        assert release.wait(timeout=5)
        return "stale"

    reader = threading.Thread(target=lambda: results.append(cache.compute_or_fetch("route:1", 60, slow_fetch)))
    reader.start()
    assert fetching.wait(timeout=5)
    cache.delete("route:1")
    release.set()
    reader.join(timeout=5)

    assert results == ["stale"]
    assert cache.get("route:1") is None
    assert cache.compute_or_fetch("route:1", 60, lambda: "fresh") == "fresh"
    assert cache.get("route:1") == "fresh"


def test_fetch_overlapping_a_pattern_invalidation_is_not_stored() -> None:
    cache = GeoCache()
    fetching = threading.Event()
    release = threading.Event()

    def slow_fetch() -> list:
        fetching.set()
        assert release.wait(timeout=5)
        return [[0.0]]

    key = f"{DISTANCE_MATRIX_PREFIX}abc"
    reader = threading.Thread(target=lambda: cache.compute_or_fetch(key, 60, slow_fetch))
    reader.start()
    assert fetching.wait(timeout=5)
    cache.invalidate(f"{DISTANCE_MATRIX_PREFIX}*")
    release.set()
    reader.join(timeout=5)

    assert cache.get(key) is None


def test_concurrent_fetches_and_invalidations_never_leave_old_values() -> None:
    cache = GeoCache()
    keys = [f"route:{index}" for index in range(4)]
    versions = {key: 0 for key in keys}
    versions_lock = threading.Lock()

    def current(key: str) -> int:
        with versions_lock:
            return versions[key]

    def read(key: str) -> int:
        return cache.compute_or_fetch(key, 60, lambda: current(key))

    def write(key: str, use_pattern: bool) -> None:
        with versions_lock:
            versions[key] += 1
        if use_pattern:
            cache.invalidate(key)
        else:
            cache.delete(key)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = []
        for step in range(400):
            key = keys[step % len(keys)]
            futures.append(pool.submit(read, key))
            if step % 3 == 0:
                futures.append(pool.submit(write, key, step % 2 == 0))
        for future in futures:
            future.result()

    for key in keys:
        assert cache.get(key) in (None, versions[key])
    assert len(cache) <= len(keys)


def test_coordinate_keys_round_to_six_decimals() -> None:
    a = Location(24.7136001, 46.6753)
    b = Location(24.71360014, 46.6753)
    c = Location(24.7137, 46.6753)

    assert coordinate_key(DIRECTIONS_PREFIX, a, c) == coordinate_key(DIRECTIONS_PREFIX, b, c)
    assert coordinate_key(DIRECTIONS_PREFIX, a, c) != coordinate_key(DIRECTIONS_PREFIX, c, a)
    assert coordinate_key(DIRECTIONS_PREFIX, a).startswith(DIRECTIONS_PREFIX)


def test_address_keys_ignore_case_and_spacing() -> None:
    assert address_key("1 Main St, Springfield, IL 62701") == address_key("1  main st springfield,  IL 62701")
