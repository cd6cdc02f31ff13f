"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ...models.domain import Location, Route, TimeWindow
from .errors import CapacityExceededError


@dataclass(slots=True)
class DeliveryPoint:
    order_id: str
    demand: float
    volume: float
    service_time_minutes: float
    location: Location
    time_window: Optional[TimeWindow] = None


@dataclass(slots=True)
class VehicleCapacityProfile:
    vehicle_id: str
    max_weight: float
    max_volume: Optional[float] = None
    max_stops: Optional[int] = None

    def can_carry(self, demand: float, volume: float = 0.0, stops: int = 1) -> bool:
        if demand > self.max_weight:
            return False
        if self.max_volume is not None and volume > self.max_volume:
            return False
        if self.max_stops is not None and stops > self.max_stops:
            return False
        return True


@dataclass(slots=True)
class RouteMetrics:
    total_distance: float  # km
    estimated_duration: float  # seconds


@dataclass(slots=True)
class SavingsSolution:
    """Clarke-Wright output: routes as lists of delivery-point indices (depot excluded)."""

    routes: List[List[int]]
    demands: List[float]
    capacity: VehicleCapacityProfile
    merges: int = 0


@dataclass(slots=True)
class OptimizationResult:
    routes: List[Route]
    unassigned: List[CapacityExceededError] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def unassigned_order_ids(self) -> list[str]:
        return [error.order_id for error in self.unassigned]
