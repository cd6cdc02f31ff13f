"""Clarke-Wright savings construction of capacity-feasible delivery routes."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import Location, Order, Route, RouteStatus, RouteStop, Vehicle, VehicleStatus, utc_now
from ..maps.client import DistanceMatrix, MapOracleClient
from .errors import CapacityExceededError, NoVehiclesAvailableError
from .models import DeliveryPoint, OptimizationResult, SavingsSolution, VehicleCapacityProfile
from .sequencer import StopSequencer, sorted_by_sequence

logger = logging.getLogger(__name__)

DEPOT_INDEX = 0


@dataclass(slots=True)
class Saving:
    i: int
    j: int
    value: float


def compute_savings(distances: Sequence[Sequence[float]], point_count: int) -> list[Saving]:
    """Positive savings s(i,j) = d(0,i) + d(0,j) - d(i,j) over point indices, best first.

    Point k sits at matrix index k + 1. Pairs touching an unreachable cell
    are not candidates.
    """
    savings: list[Saving] = []
    for i in range(point_count):
        depot_i = distances[DEPOT_INDEX][i + 1]
        if depot_i < 0:
            continue
        for j in range(i + 1, point_count):
            depot_j = distances[DEPOT_INDEX][j + 1]
            between = distances[i + 1][j + 1]
            if depot_j < 0 or between < 0:
                continue
            value = depot_i + depot_j - between
            if value > 0:
                savings.append(Saving(i=i, j=j, value=value))
    savings.sort(key=lambda saving: (-saving.value, saving.i, saving.j))
    return savings


def clarke_wright_savings(
    points: Sequence[DeliveryPoint],
    distances: Sequence[Sequence[float]],
    capacity: VehicleCapacityProfile,
) -> SavingsSolution:
    """Merge singleton routes greedily by descending savings.

    Routes are tracked as index lists keyed by route id, with route_of mapping
    each point to the id of the route that currently holds it. Two routes are
    spliced only at their endpoints and only while the merged load stays
    within capacity.
    """
    route_of = list(range(len(points)))
    routes: dict[int, list[int]] = {index: [index] for index in range(len(points))}
    demand = {index: point.demand for index, point in enumerate(points)}
    volume = {index: point.volume for index, point in enumerate(points)}
    merges = 0

    for saving in compute_savings(distances, len(points)):
        i, j = saving.i, saving.j
        route_i, route_j = route_of[i], route_of[j]
        if route_i == route_j:
            continue
        first, second = routes[route_i], routes[route_j]
        i_head, i_tail = first[0] == i, first[-1] == i
        j_head, j_tail = second[0] == j, second[-1] == j
        if not (i_head or i_tail) or not (j_head or j_tail):
            continue

        merged_demand = demand[route_i] + demand[route_j]
        merged_volume = volume[route_i] + volume[route_j]
        if not capacity.can_carry(merged_demand, merged_volume, len(first) + len(second)):
            continue

        if i_tail and j_head:
            merged = first + second
        elif i_head and j_tail:
            merged = second + first
        elif i_head and j_head:
            merged = first[::-1] + second
        else:
            merged = first + second[::-1]

        routes[route_i] = merged
        demand[route_i] = merged_demand
        volume[route_i] = merged_volume
        for point in second:
            route_of[point] = route_i
        del routes[route_j], demand[route_j], volume[route_j]
        merges += 1

    ordered_ids = sorted(routes)
    return SavingsSolution(
        routes=[routes[route_id] for route_id in ordered_ids],
        demands=[demand[route_id] for route_id in ordered_ids],
        capacity=capacity,
        merges=merges,
    )


def merge_capacity(profiles: Sequence[VehicleCapacityProfile]) -> VehicleCapacityProfile:
    """The tightest limits across the fleet, so every merged route fits any vehicle."""
    volumes = [profile.max_volume for profile in profiles if profile.max_volume is not None]
    stops = [profile.max_stops for profile in profiles if profile.max_stops is not None]
    return VehicleCapacityProfile(
        vehicle_id="fleet-minimum",
        max_weight=min(profile.max_weight for profile in profiles),
        max_volume=min(volumes) if volumes else None,
        max_stops=min(stops) if stops else None,
    )


def route_distance(route: Sequence[int], distances: Sequence[Sequence[float]]) -> float:
    """Depot round-trip distance for a route of point indices; unreachable legs count as zero."""
    nodes = [DEPOT_INDEX, *(point + 1 for point in route), DEPOT_INDEX]
    return sum(max(distances[a][b], 0.0) for a, b in zip(nodes, nodes[1:]))


class RouteOptimizer:
    """Partitions orders among a vehicle fleet using the savings heuristic."""

    def __init__(
        self,
        maps: MapOracleClient,
        sequencer: StopSequencer,
        config: Settings | None = None,
    ) -> None:
        self.maps = maps
        self.sequencer = sequencer
        self.config = config or default_settings

    def delivery_point(self, order: Order) -> DeliveryPoint:
        service_minutes = (
            self.config.base_order_service_minutes
            + self.config.per_package_service_minutes * len(order.packages)
        )
        return DeliveryPoint(
            order_id=order.id,
            demand=order.total_weight,
            volume=order.total_volume,
            service_time_minutes=service_minutes,
            location=order.delivery_address.coordinates,
            time_window=order.time_window,
        )

    @staticmethod
    def capacity_profiles(vehicles: Sequence[Vehicle]) -> list[VehicleCapacityProfile]:
        return [
            VehicleCapacityProfile(
                vehicle_id=vehicle.id,
                max_weight=vehicle.capacity.max_weight,
                max_volume=vehicle.capacity.max_volume,
                max_stops=vehicle.capacity.max_packages,
            )
            for vehicle in vehicles
        ]

    def optimize_routes(
        self,
        orders: Sequence[Order],
        vehicles: Sequence[Vehicle],
        depot: Location,
        start_time: Optional[datetime] = None,
        load_id: Optional[str] = None,
    ) -> OptimizationResult:
        if not orders:
            return OptimizationResult(routes=[], metadata={"status": "empty", "orders": 0})
        if not vehicles:
            raise NoVehiclesAvailableError()
        available = [vehicle for vehicle in vehicles if vehicle.status == VehicleStatus.AVAILABLE]
        if not available:
            raise NoVehiclesAvailableError(f"None of the {len(vehicles)} vehicles is available.")

        profiles = self.capacity_profiles(available)
        largest = max(profile.max_weight for profile in profiles)

        points: list[DeliveryPoint] = []
        placeable: list[Order] = []
        unassigned: list[CapacityExceededError] = []
        for order in orders:
            point = self.delivery_point(order)
            if any(profile.can_carry(point.demand, point.volume) for profile in profiles):
                points.append(point)
                placeable.append(order)
            else:
                error = CapacityExceededError(order.id, point.demand, largest)
                logger.warning(str(error))
                unassigned.append(error)

        if not points:
            return OptimizationResult(
                routes=[],
                unassigned=unassigned,
                metadata={"status": "infeasible", "orders": len(orders), "routes": 0},
            )

        matrix = self.maps.build_matrix([depot, *(point.location for point in points)])
        capacity = merge_capacity(profiles)
        solution = clarke_wright_savings(points, matrix.distances, capacity)
        logger.info(
            f"Savings heuristic merged {len(points)} orders into {len(solution.routes)} routes "
            f"({solution.merges} merges, capacity {capacity.max_weight:g})"
        )

        start_time = start_time or utc_now()
        routes: list[Route] = []
        summaries: list[dict] = []
        for route_index, point_indices in enumerate(solution.routes):
            route_points = [points[index] for index in point_indices]
            route_volume = sum(point.volume for point in route_points)
            vehicle = self._pick_vehicle(
                profiles, route_index, solution.demands[route_index], route_volume, len(route_points)
            )
            if vehicle is None:
                for point in route_points:
                    unassigned.append(CapacityExceededError(point.order_id, point.demand, largest))
                continue

            route = self._build_route(
                point_indices, placeable, matrix, vehicle.vehicle_id, start_time, load_id
            )
            routes.append(route)
            summaries.append(
                {
                    "route_id": route.id,
                    "vehicle_id": vehicle.vehicle_id,
                    "order_ids": route.order_ids,
                    "demand": solution.demands[route_index],
                    "service_minutes": sum(point.service_time_minutes for point in route_points),
                    "depot_round_trip_km": route_distance(point_indices, matrix.distances),
                }
            )

        if unassigned:
            logger.warning(
                f"{len(unassigned)} orders could not be routed: "
                + ", ".join(error.order_id for error in unassigned)
            )
        metadata = {
            "status": "partial" if unassigned else "complete",
            "orders": len(orders),
            "routes": len(routes),
            "savings_merges": solution.merges,
            "merge_capacity": {
                "max_weight": capacity.max_weight,
                "max_volume": capacity.max_volume,
                "max_stops": capacity.max_stops,
            },
            "unreachable_cells": matrix.unreachable_count,
            "route_summaries": summaries,
        }
        return OptimizationResult(routes=routes, unassigned=unassigned, metadata=metadata)

    @staticmethod
    def _pick_vehicle(
        profiles: Sequence[VehicleCapacityProfile],
        route_index: int,
        demand: float,
        volume: float,
        stops: int,
    ) -> Optional[VehicleCapacityProfile]:
        """Round-robin from route_index, skipping vehicles that cannot carry the route."""
        for offset in range(len(profiles)):
            profile = profiles[(route_index + offset) % len(profiles)]
            if profile.can_carry(demand, volume, stops):
                return profile
        return None

    def _build_route(
        self,
        point_indices: Sequence[int],
        orders: Sequence[Order],
        matrix: DistanceMatrix,
        vehicle_id: str,
        start_time: datetime,
        load_id: Optional[str],
    ) -> Route:
        stops = [
            RouteStop(
                order_id=orders[index].id,
                address=orders[index].delivery_address,
                sequence=sequence,
            )
            for sequence, index in enumerate(point_indices)
        ]
        route_matrix = matrix.subset([index + 1 for index in point_indices])
        timed = self.sequencer.calculate_estimated_travel_times(stops, start_time, route_matrix)
        metrics = self.sequencer.calculate_route_metrics(stops, route_matrix)
        now = utc_now()
        return Route(
            id=str(uuid.uuid4()),
            load_id=load_id or f"load-{uuid.uuid4()}",
            vehicle_id=vehicle_id,
            stops=timed,
            total_distance=metrics.total_distance,
            estimated_duration=metrics.estimated_duration,
            status=RouteStatus.OPTIMIZED,
            created_at=now,
            updated_at=now,
        )

    def suggest_alternative_routes(self, route: Route) -> list[Route]:
        """Candidate re-orderings of an existing route, with fresh arrivals and metrics.

        The first alternative visits the stops in reverse. Routes with four or
        more stops also get a second one with the first and last stops
        swapped. Alternatives keep the route's first arrival as their start
        and are not persisted.
        """
        current = sorted_by_sequence(route.stops)
        if not current:
            return []
        orderings = [list(reversed(current))]
        if len(current) >= 4:
            orderings.append([current[-1], *current[1:-1], current[0]])

        start_time = current[0].estimated_arrival
        alternatives: list[Route] = []
        for number, ordering in enumerate(orderings, start=1):
            resequenced = [dataclasses.replace(stop, sequence=index) for index, stop in enumerate(ordering)]
            timed, metrics = self.sequencer.sequence_stops(resequenced, start_time)
            alternatives.append(
                dataclasses.replace(
                    route,
                    id=f"{route.id}-alt{number}",
                    stops=timed,
                    total_distance=metrics.total_distance,
                    estimated_duration=metrics.estimated_duration,
                    updated_at=utc_now(),
                )
            )
        logger.info(f"Suggested {len(alternatives)} alternative orderings for route {route.id}")
        return alternatives
