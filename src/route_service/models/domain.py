"""Domain models for orders, vehicles and routes."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RouteStatus(str, Enum):
    PLANNED = "planned"
    OPTIMIZED = "optimized"
    DISPATCHED = "dispatched"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


@dataclass(frozen=True, slots=True)
class Location:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.latitude) and -90.0 <= self.latitude <= 90.0):
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not (math.isfinite(self.longitude) and -180.0 <= self.longitude <= 180.0):
            raise ValueError(f"Longitude out of range: {self.longitude}")

    def rounded(self, places: int = 6) -> tuple[float, float]:
        return round(self.latitude, places), round(self.longitude, places)


@dataclass(frozen=True, slots=True)
class Address:
    """Postal address with the coordinates produced by geocoding."""

    street: str
    city: str
    state: str
    zip_code: str
    coordinates: Location

    def to_query(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


@dataclass(frozen=True, slots=True)
class Dimensions:
    length: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if min(self.length, self.width, self.height) <= 0:
            raise ValueError("Package dimensions must be positive.")

    @property
    def volume(self) -> float:
        return self.length * self.width * self.height


@dataclass(slots=True)
class Package:
    id: str
    description: str
    weight: float
    dimensions: Dimensions
    fragile: bool = False

    def __post_init__(self) -> None:
        if self.weight <= 0:
            raise ValueError(f"Package {self.id} weight must be positive.")


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start_time: datetime
    end_time: datetime

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError("Time window end must be after its start.")

    def contains(self, moment: datetime) -> bool:
        return self.start_time <= moment <= self.end_time


@dataclass(slots=True)
class Order:
    """A customer order delivered as a single route stop."""

    id: str
    delivery_address: Address
    packages: List[Package] = field(default_factory=list)
    time_window: Optional[TimeWindow] = None
    customer_name: Optional[str] = None

    @property
    def total_weight(self) -> float:
        return sum(package.weight for package in self.packages)

    @property
    def total_volume(self) -> float:
        return sum(package.dimensions.volume for package in self.packages)


@dataclass(frozen=True, slots=True)
class VehicleCapacity:
    max_weight: float
    max_volume: Optional[float] = None
    max_packages: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_weight <= 0:
            raise ValueError("Vehicle max_weight must be positive.")


@dataclass(slots=True)
class Vehicle:
    id: str
    capacity: VehicleCapacity
    status: VehicleStatus = VehicleStatus.AVAILABLE
    license_plate: Optional[str] = None
    current_location: Optional[Location] = None


@dataclass(slots=True)
class RouteStop:
    order_id: str
    address: Address
    sequence: int
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    delivery_status: Optional[DeliveryStatus] = None
    delivery_proof: Optional[str] = None


def check_stop_sequences(stops: List[RouteStop]) -> None:
    """Raise ValueError unless the stop sequences form a dense 0..n-1 permutation."""
    sequences = sorted(stop.sequence for stop in stops)
    if sequences != list(range(len(stops))):
        raise ValueError(f"Stop sequences must be a dense 0..{len(stops) - 1} permutation, got {sequences}")
    order_ids = [stop.order_id for stop in stops]
    if len(set(order_ids)) != len(order_ids):
        raise ValueError("A route may not visit the same order twice.")


@dataclass(slots=True)
class Route:
    id: str
    load_id: str
    vehicle_id: str
    stops: List[RouteStop]
    total_distance: float
    estimated_duration: float
    status: RouteStatus = RouteStatus.PLANNED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        check_stop_sequences(self.stops)
        self.stops = sorted(self.stops, key=lambda stop: stop.sequence)
        if self.total_distance < 0 or self.estimated_duration < 0:
            raise ValueError("Route metrics cannot be negative.")

    @property
    def order_ids(self) -> list[str]:
        return [stop.order_id for stop in self.stops]
