"""Routing orchestration service."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import Address, Location, Order, Route, RouteStatus, RouteStop, Vehicle, utc_now
from ...persistence.route_store import RouteStore
from ..geospatial import decode_polyline
from ..maps.cache import ROUTE_MAP_PREFIX, ROUTE_PREFIX, TURN_BY_TURN_PREFIX, GeoCache
from ..maps.client import DirectionStep, MapOracleClient
from .errors import DirectionsError, RouteNotFoundError
from .models import OptimizationResult
from .optimizer import RouteOptimizer
from .sequencer import StopSequencer, normalize_sequences, sorted_by_sequence
from .time_windows import TimeWindowValidator

logger = logging.getLogger(__name__)


class RouteLifecycleManager:
    """Owns route records and keeps their stops, times and metrics consistent.

    Every stop mutation recomputes arrival times and metrics before the route
    is written, then drops the route's cached views along with all cached
    directions and distance matrices.
    """

    def __init__(
        self,
        store: RouteStore,
        cache: GeoCache,
        maps: MapOracleClient,
        sequencer: StopSequencer | None = None,
        optimizer: RouteOptimizer | None = None,
        validator: TimeWindowValidator | None = None,
        config: Settings | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.maps = maps
        self.config = config or default_settings
        self.sequencer = sequencer or StopSequencer(maps, self.config)
        self.optimizer = optimizer or RouteOptimizer(maps, self.sequencer, self.config)
        self.validator = validator or TimeWindowValidator()

    def _load(self, route_id: str) -> Route:
        route = self.store.get(route_id)
        if route is None:
            raise RouteNotFoundError(route_id)
        return route

    def _save(self, route: Route) -> Route:
        self.store.put(route)
        self.invalidate_route_caches(route.id)
        return route

    def invalidate_route_caches(self, route_id: str) -> None:
        for prefix in (ROUTE_PREFIX, ROUTE_MAP_PREFIX, TURN_BY_TURN_PREFIX):
            self.cache.delete(f"{prefix}{route_id}")
        self.maps.invalidate_route_caches()
        logger.debug(f"Caches invalidated for route: {route_id}")

    @staticmethod
    def _default_start(route: Route) -> Optional[datetime]:
        ordered = sorted_by_sequence(route.stops)
        return ordered[0].estimated_arrival if ordered else None

    def _with_stops(self, route: Route, stops: Sequence[RouteStop], start_time: Optional[datetime]) -> Route:
        timed, metrics = self.sequencer.sequence_stops(stops, start_time)
        return dataclasses.replace(
            route,
            stops=timed,
            total_distance=metrics.total_distance,
            estimated_duration=metrics.estimated_duration,
            updated_at=utc_now(),
        )

    def create_route(
        self,
        load_id: str,
        vehicle_id: str,
        stops: Sequence[RouteStop],
        start_time: Optional[datetime] = None,
    ) -> Route:
        timed, metrics = self.sequencer.sequence_stops(normalize_sequences(stops), start_time)
        now = utc_now()
        route = Route(
            id=str(uuid.uuid4()),
            load_id=load_id,
            vehicle_id=vehicle_id,
            stops=timed,
            total_distance=metrics.total_distance,
            estimated_duration=metrics.estimated_duration,
            status=RouteStatus.PLANNED,
            created_at=now,
            updated_at=now,
        )
        self.store.put(route)
        logger.info(f"Created route {route.id} for load {load_id} with {len(route.stops)} stops")
        return route

    def get_route_by_id(self, route_id: str) -> Route:
        return self.cache.compute_or_fetch(
            f"{ROUTE_PREFIX}{route_id}",
            self.config.route_cache_ttl_seconds,
            lambda: self._load(route_id),
        )

    def list_routes(self, status: Optional[RouteStatus] = None) -> list[Route]:
        if status is None:
            return self.store.list_all()
        return self.store.list_by_status(status)

    def get_routes_by_vehicle_id(self, vehicle_id: str) -> list[Route]:
        return self.store.list_by_vehicle(vehicle_id)

    def get_route_by_load_id(self, load_id: str) -> Optional[Route]:
        return self.store.find_by_load(load_id)

    def update_route_stops(
        self,
        route_id: str,
        stops: Sequence[RouteStop],
        start_time: Optional[datetime] = None,
    ) -> Route:
        route = self._load(route_id)
        updated = self._with_stops(route, normalize_sequences(stops), start_time or self._default_start(route))
        return self._save(updated)

    def reorder_route_stops(
        self,
        route_id: str,
        stop_order: Sequence[str],
        start_time: Optional[datetime] = None,
    ) -> Route:
        route = self._load(route_id)
        return self._save(self.sequencer.reorder_route_stops(route, stop_order, start_time))

    def update_route_status(self, route_id: str, status: RouteStatus) -> Route:
        route = self._load(route_id)
        updated = dataclasses.replace(route, status=status, updated_at=utc_now())
        self.store.put(updated)
        for prefix in (ROUTE_PREFIX, ROUTE_MAP_PREFIX, TURN_BY_TURN_PREFIX):
            self.cache.delete(f"{prefix}{route_id}")
        logger.info(f"Route {route_id} status {route.status.value} -> {status.value}")
        return updated

    def recalculate_travel_times(self, route_id: str, start_time: Optional[datetime] = None) -> Route:
        route = self._load(route_id)
        return self._save(self._with_stops(route, route.stops, start_time or utc_now()))

    def validate_time_windows(self, route_id: str, orders: Sequence[Order]) -> list[str]:
        return self.validator.detect_conflicts(self.get_route_by_id(route_id), orders)

    def optimize_route_sequence(self, route_id: str, orders: Sequence[Order]) -> Route:
        """Reorder stops by delivery-window start and recompute times."""
        route = self._load(route_id)
        stops = self.sequencer.sequence_by_time_window(route.stops, orders)
        return self._save(self._with_stops(route, stops, self._default_start(route)))

    def plan_routes(
        self,
        orders: Sequence[Order],
        vehicles: Sequence[Vehicle],
        depot: Location,
        start_time: Optional[datetime] = None,
        load_id: Optional[str] = None,
    ) -> OptimizationResult:
        result = self.optimizer.optimize_routes(orders, vehicles, depot, start_time, load_id)
        for route in result.routes:
            self.store.put(route)
        return result

    def suggest_alternative_routes(self, route_id: str) -> list[Route]:
        """Unsaved re-orderings of a stored route for side-by-side comparison."""
        return self.optimizer.suggest_alternative_routes(self.get_route_by_id(route_id))

    def generate_route_map_data(self, route_id: str) -> dict:
        def build() -> dict:
            route = self._load(route_id)
            stops = sorted_by_sequence(route.stops)
            locations = [stop.address.coordinates for stop in stops]
            polyline = ""
            if len(locations) >= 2:
                try:
                    directions = self.maps.get_directions(locations[0], locations[-1], locations[1:-1])
                    polyline = directions.polyline
                except DirectionsError as exc:
                    logger.error(f"Error getting directions for route map {route_id}: {exc}")
            return {
                "polyline": polyline,
                "path": decode_polyline(polyline),
                "waypoints": [
                    {
                        "location": stop.address.coordinates,
                        "order_id": stop.order_id,
                        "sequence": stop.sequence,
                        "estimated_arrival": stop.estimated_arrival,
                    }
                    for stop in stops
                ],
            }

        return self.cache.compute_or_fetch(
            f"{ROUTE_MAP_PREFIX}{route_id}", self.config.route_cache_ttl_seconds, build
        )

    def generate_turn_by_turn_directions(self, route_id: str) -> list[list[DirectionStep]]:
        def build() -> list[list[DirectionStep]]:
            route = self._load(route_id)
            locations = [stop.address.coordinates for stop in sorted_by_sequence(route.stops)]
            return self.maps.generate_turn_by_turn_directions(locations)

        return self.cache.compute_or_fetch(
            f"{TURN_BY_TURN_PREFIX}{route_id}", self.config.route_cache_ttl_seconds, build
        )

    def geocode_address(self, address: Address | str) -> Location:
        return self.maps.geocode_address(address)

    def calculate_distance(self, origin: Location, destination: Location) -> dict[str, float]:
        return self.maps.calculate_distance(origin, destination)
