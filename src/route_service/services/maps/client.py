"""Cache-fronted access to the mapping oracle."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import Address, Location
from ..routing.errors import DirectionsError, DistanceMatrixError, GeocodingError
from .cache import (
    DIRECTIONS_PREFIX,
    DISTANCE_MATRIX_PREFIX,
    GeoCache,
    address_key,
    coordinate_key,
)
from .oracle import MapOracle

logger = logging.getLogger(__name__)

UNREACHABLE = -1.0


@dataclass(slots=True)
class DirectionStep:
    distance: float  # km
    duration: float  # seconds
    instructions: str
    polyline: str
    start_location: Location
    end_location: Location


@dataclass(slots=True)
class DirectionsResult:
    distance: float  # km
    duration: float  # seconds
    polyline: str
    steps: List[DirectionStep] = field(default_factory=list)


@dataclass(slots=True)
class DistanceMatrix:
    """Distances (km) and durations (s); unreachable cells hold UNREACHABLE."""

    origins: List[Location]
    destinations: List[Location]
    distances: List[List[float]]
    durations: List[List[float]]

    def is_reachable(self, i: int, j: int) -> bool:
        return self.distances[i][j] >= 0 and self.durations[i][j] >= 0

    def subset(self, indices: Sequence[int]) -> "DistanceMatrix":
        """Square sub-matrix over the given indices of a square matrix, in that order."""
        return DistanceMatrix(
            origins=[self.origins[i] for i in indices],
            destinations=[self.destinations[j] for j in indices],
            distances=[[self.distances[i][j] for j in indices] for i in indices],
            durations=[[self.durations[i][j] for j in indices] for i in indices],
        )

    @property
    def unreachable_count(self) -> int:
        return sum(
            1
            for i in range(len(self.origins))
            for j in range(len(self.destinations))
            if not self.is_reachable(i, j)
        )


def _location(payload: dict) -> Location:
    return Location(latitude=float(payload["lat"]), longitude=float(payload["lng"]))


def _chunks(items: Sequence[Location], size: int) -> list[tuple[int, list[Location]]]:
    return [(start, list(items[start : start + size])) for start in range(0, len(items), size)]


class MapOracleClient:
    """Geocoding, directions and distance matrices, memoized in a GeoCache.

    Oracle failures propagate as GeocodingError, DirectionsError or
    DistanceMatrixError; nothing stale is served in their place.
    """

    def __init__(self, oracle: MapOracle, cache: GeoCache, config: Settings | None = None) -> None:
        self.oracle = oracle
        self.cache = cache
        self.config = config or default_settings

    def geocode_address(self, address: Address | str) -> Location:
        query = address.to_query() if isinstance(address, Address) else address

        def fetch() -> Location:
            payload = self.oracle.geocode(query)
            results = payload.get("results") or []
            if not results:
                raise GeocodingError(f"No geocoding results found for address: {query}")
            return _location(results[0]["geometry"]["location"])

        return self.cache.compute_or_fetch(address_key(query), self.config.geocode_cache_ttl_seconds, fetch)

    def get_directions(
        self,
        origin: Location,
        destination: Location,
        waypoints: Optional[Sequence[Location]] = None,
    ) -> DirectionsResult:
        waypoints = list(waypoints or [])

        def fetch() -> DirectionsResult:
            payload = self.oracle.directions(origin, destination, waypoints)
            routes = payload.get("routes") or []
            if not routes:
                raise DirectionsError(
                    f"No route found from {origin.latitude},{origin.longitude} "
                    f"to {destination.latitude},{destination.longitude}"
                )
            return self._parse_directions(routes[0])

        key = coordinate_key(DIRECTIONS_PREFIX, origin, destination, waypoints)
        return self.cache.compute_or_fetch(key, self.config.directions_cache_ttl_seconds, fetch)

    @staticmethod
    def _parse_directions(route: dict) -> DirectionsResult:
        total_distance_m = 0.0
        total_duration_s = 0.0
        steps: list[DirectionStep] = []
        try:
            for leg in route.get("legs", []):
                total_distance_m += float(leg["distance"]["value"])
                total_duration_s += float(leg["duration"]["value"])
                for step in leg.get("steps", []):
                    steps.append(
                        DirectionStep(
                            distance=float(step["distance"]["value"]) / 1000.0,
                            duration=float(step["duration"]["value"]),
                            instructions=step.get("html_instructions", ""),
                            polyline=step.get("polyline", {}).get("points", ""),
                            start_location=_location(step["start_location"]),
                            end_location=_location(step["end_location"]),
                        )
                    )
        except (KeyError, TypeError, ValueError) as exc:
            raise DirectionsError(f"Malformed directions response: {exc}") from exc
        return DirectionsResult(
            distance=total_distance_m / 1000.0,
            duration=total_duration_s,
            polyline=route.get("overview_polyline", {}).get("points", ""),
            steps=steps,
        )

    def get_distance_matrix(
        self, origins: Sequence[Location], destinations: Sequence[Location]
    ) -> DistanceMatrix:
        origins = list(origins)
        destinations = list(destinations)
        if not origins or not destinations:
            return DistanceMatrix(origins=origins, destinations=destinations, distances=[], durations=[])

        key = coordinate_key(DISTANCE_MATRIX_PREFIX, origins, destinations)
        return self.cache.compute_or_fetch(
            key,
            self.config.distance_matrix_cache_ttl_seconds,
            lambda: self._fetch_matrix(origins, destinations),
        )

    def build_matrix(self, locations: Sequence[Location]) -> DistanceMatrix:
        """Square matrix over locations, with a zero diagonal."""
        matrix = self.get_distance_matrix(locations, locations)
        for index in range(len(matrix.origins)):
            matrix.distances[index][index] = 0.0
            matrix.durations[index][index] = 0.0
        return matrix

    def _fetch_matrix(self, origins: list[Location], destinations: list[Location]) -> DistanceMatrix:
        distances = [[UNREACHABLE] * len(destinations) for _ in origins]
        durations = [[UNREACHABLE] * len(destinations) for _ in origins]

        chunk_size = self.config.maps_matrix_chunk_size
        requests = [
            (row_start, row_points, col_start, col_points)
            for row_start, row_points in _chunks(origins, chunk_size)
            for col_start, col_points in _chunks(destinations, chunk_size)
        ]

        start_time = time.time()
        if len(requests) == 1:
            results = [self.oracle.distance_matrix(origins, destinations)]
        else:
            logger.info(
                f"Chunking distance matrix {len(origins)}x{len(destinations)} into {len(requests)} requests "
                f"(max {self.config.maps_max_parallel_requests} concurrent)"
            )
            with ThreadPoolExecutor(max_workers=self.config.maps_max_parallel_requests) as executor:
                futures = [
                    executor.submit(self.oracle.distance_matrix, row_points, col_points)
                    for _, row_points, _, col_points in requests
                ]
                # result() re-raises the first chunk failure; a partial matrix is never cached.
                results = [future.result() for future in futures]

        for (row_start, row_points, col_start, col_points), payload in zip(requests, results):
            rows = payload.get("rows") or []
            if len(rows) != len(row_points):
                raise DistanceMatrixError(
                    f"Distance matrix returned {len(rows)} rows for {len(row_points)} origins"
                )
            for local_row, row in enumerate(rows):
                elements = row.get("elements") or []
                if len(elements) != len(col_points):
                    raise DistanceMatrixError(
                        f"Distance matrix row has {len(elements)} elements for {len(col_points)} destinations"
                    )
                for local_col, element in enumerate(elements):
                    if element.get("status") != "OK":
                        continue
                    i = row_start + local_row
                    j = col_start + local_col
                    distances[i][j] = float(element["distance"]["value"]) / 1000.0
                    durations[i][j] = float(element["duration"]["value"])

        matrix = DistanceMatrix(
            origins=origins, destinations=destinations, distances=distances, durations=durations
        )
        unreachable = matrix.unreachable_count
        if unreachable:
            logger.warning(
                f"Distance matrix {len(origins)}x{len(destinations)} has {unreachable} unreachable cells"
            )
        logger.debug(f"Fetched distance matrix in {time.time() - start_time:.2f}s")
        return matrix

    def calculate_distance(self, origin: Location, destination: Location) -> dict[str, float]:
        directions = self.get_directions(origin, destination)
        return {"distance": directions.distance, "duration": directions.duration}

    def generate_turn_by_turn_directions(self, locations: Sequence[Location]) -> list[list[DirectionStep]]:
        """Steps for every consecutive leg; a leg without directions yields an empty list."""
        legs: list[list[DirectionStep]] = []
        for index, (origin, destination) in enumerate(zip(locations, locations[1:])):
            try:
                legs.append(self.get_directions(origin, destination).steps)
            except DirectionsError as exc:
                logger.warning(f"Error getting directions between stops {index} and {index + 1}: {exc}")
                legs.append([])
        return legs

    def invalidate_route_caches(self) -> int:
        """Drop every cached directions and distance-matrix entry."""
        removed = self.cache.invalidate(f"{DIRECTIONS_PREFIX}*")
        removed += self.cache.invalidate(f"{DISTANCE_MATRIX_PREFIX}*")
        logger.info(f"Route caches invalidated ({removed} entries)")
        return removed

    def check_health(self) -> bool:
        checker = getattr(self.oracle, "check_health", None)
        return bool(checker()) if checker else True
