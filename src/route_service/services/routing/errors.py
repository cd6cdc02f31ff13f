"""Typed errors raised by the routing core."""

from __future__ import annotations

from typing import Sequence


class RouteServiceError(Exception):
    """Base class for routing core failures."""


class MapOracleError(RouteServiceError):
    """The mapping oracle could not answer a request."""


class GeocodingError(MapOracleError):
    pass


class DirectionsError(MapOracleError):
    pass


class DistanceMatrixError(MapOracleError):
    pass


class NoVehiclesAvailableError(RouteServiceError):
    def __init__(self, message: str = "No vehicles available for route optimization.") -> None:
        super().__init__(message)


class InvalidStopOrderError(RouteServiceError):
    def __init__(self, unknown_ids: Sequence[str]) -> None:
        self.unknown_ids = list(unknown_ids)
        super().__init__(
            "Invalid stop order: orderIds not present in the route: " + ", ".join(self.unknown_ids)
        )


class RouteNotFoundError(RouteServiceError):
    def __init__(self, route_id: str) -> None:
        self.route_id = route_id
        super().__init__(f"Route not found with ID: {route_id}")


class CapacityExceededError(RouteServiceError):
    """An order is heavier than every vehicle in the fleet can carry."""

    def __init__(self, order_id: str, demand: float, max_capacity: float) -> None:
        self.order_id = order_id
        self.demand = demand
        self.max_capacity = max_capacity
        super().__init__(
            f"Order {order_id} demand {demand:g} exceeds the largest vehicle capacity {max_capacity:g}"
        )

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "demand": self.demand,
            "max_capacity": self.max_capacity,
            "reason": str(self),
        }
