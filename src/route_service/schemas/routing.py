"""Routing request/response schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.domain import (
    Address,
    DeliveryStatus,
    Dimensions,
    Location,
    Order,
    Package,
    Route,
    RouteStatus,
    RouteStop,
    TimeWindow,
    Vehicle,
    VehicleCapacity,
    VehicleStatus,
)
from ..services.maps.client import DirectionStep


class LocationModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Location:
        return Location(latitude=self.latitude, longitude=self.longitude)

    @classmethod
    def from_domain(cls, location: Location) -> "LocationModel":
        return cls(latitude=location.latitude, longitude=location.longitude)


class AddressInput(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str

    def to_query(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


class AddressModel(AddressInput):
    coordinates: LocationModel

    def to_domain(self) -> Address:
        return Address(
            street=self.street,
            city=self.city,
            state=self.state,
            zip_code=self.zip_code,
            coordinates=self.coordinates.to_domain(),
        )

    @classmethod
    def from_domain(cls, address: Address) -> "AddressModel":
        return cls(
            street=address.street,
            city=address.city,
            state=address.state,
            zip_code=address.zip_code,
            coordinates=LocationModel.from_domain(address.coordinates),
        )


class RouteStopModel(BaseModel):
    order_id: str
    address: AddressModel
    sequence: int = Field(..., ge=0)
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    delivery_status: Optional[DeliveryStatus] = None
    delivery_proof: Optional[str] = None

    def to_domain(self) -> RouteStop:
        return RouteStop(
            order_id=self.order_id,
            address=self.address.to_domain(),
            sequence=self.sequence,
            estimated_arrival=self.estimated_arrival,
            actual_arrival=self.actual_arrival,
            delivery_status=self.delivery_status,
            delivery_proof=self.delivery_proof,
        )

    @classmethod
    def from_domain(cls, stop: RouteStop) -> "RouteStopModel":
        return cls(
            order_id=stop.order_id,
            address=AddressModel.from_domain(stop.address),
            sequence=stop.sequence,
            estimated_arrival=stop.estimated_arrival,
            actual_arrival=stop.actual_arrival,
            delivery_status=stop.delivery_status,
            delivery_proof=stop.delivery_proof,
        )


class RouteModel(BaseModel):
    id: str
    load_id: str
    vehicle_id: str
    stops: List[RouteStopModel]
    total_distance: float = Field(..., description="Kilometres.")
    estimated_duration: float = Field(..., description="Seconds.")
    status: RouteStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, route: Route) -> "RouteModel":
        return cls(
            id=route.id,
            load_id=route.load_id,
            vehicle_id=route.vehicle_id,
            stops=[RouteStopModel.from_domain(stop) for stop in route.stops],
            total_distance=route.total_distance,
            estimated_duration=route.estimated_duration,
            status=route.status,
            created_at=route.created_at,
            updated_at=route.updated_at,
        )


class TimeWindowModel(BaseModel):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _end_after_start(self) -> "TimeWindowModel":
        # Naive bounds are UTC, so mixed naive and aware bounds compare cleanly.
        if self.start_time.tzinfo is None:
            self.start_time = self.start_time.replace(tzinfo=timezone.utc)
        if self.end_time.tzinfo is None:
            self.end_time = self.end_time.replace(tzinfo=timezone.utc)
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class DimensionsModel(BaseModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class PackageModel(BaseModel):
    id: str
    description: str = ""
    weight: float = Field(..., gt=0)
    dimensions: DimensionsModel
    fragile: bool = False


class OrderModel(BaseModel):
    id: str
    delivery_address: AddressModel
    packages: List[PackageModel] = Field(default_factory=list)
    time_window: Optional[TimeWindowModel] = None
    customer_name: Optional[str] = None

    def to_domain(self) -> Order:
        return Order(
            id=self.id,
            delivery_address=self.delivery_address.to_domain(),
            packages=[
                Package(
                    id=package.id,
                    description=package.description,
                    weight=package.weight,
                    dimensions=Dimensions(**package.dimensions.model_dump()),
                    fragile=package.fragile,
                )
                for package in self.packages
            ],
            time_window=TimeWindow(self.time_window.start_time, self.time_window.end_time)
            if self.time_window
            else None,
            customer_name=self.customer_name,
        )


class VehicleCapacityModel(BaseModel):
    max_weight: float = Field(..., gt=0)
    max_volume: Optional[float] = Field(None, gt=0)
    max_packages: Optional[int] = Field(None, ge=1)


class VehicleModel(BaseModel):
    id: str
    capacity: VehicleCapacityModel
    status: VehicleStatus = VehicleStatus.AVAILABLE
    license_plate: Optional[str] = None

    def to_domain(self) -> Vehicle:
        return Vehicle(
            id=self.id,
            capacity=VehicleCapacity(**self.capacity.model_dump()),
            status=self.status,
            license_plate=self.license_plate,
        )


class CreateRouteRequest(BaseModel):
    load_id: str
    vehicle_id: str
    stops: List[RouteStopModel]
    start_time: Optional[datetime] = None


class UpdateStopsRequest(BaseModel):
    stops: List[RouteStopModel]
    start_time: Optional[datetime] = None


class ReorderStopsRequest(BaseModel):
    stop_order: List[str] = Field(..., description="Order IDs in the new visiting order.")
    start_time: Optional[datetime] = None


class StatusUpdateRequest(BaseModel):
    status: RouteStatus


class TravelTimesRequest(BaseModel):
    start_time: Optional[datetime] = None


class OrdersRequest(BaseModel):
    orders: List[OrderModel]


class TimeWindowConflictsResponse(BaseModel):
    conflicts: List[str]


class WaypointModel(BaseModel):
    location: LocationModel
    order_id: str
    sequence: int
    estimated_arrival: Optional[datetime] = None


class MapDataResponse(BaseModel):
    polyline: str
    path: List[tuple[float, float]] = Field(default_factory=list)
    waypoints: List[WaypointModel]


class DirectionStepModel(BaseModel):
    distance: float
    duration: float
    instructions: str
    polyline: str
    start_location: LocationModel
    end_location: LocationModel

    @classmethod
    def from_domain(cls, step: DirectionStep) -> "DirectionStepModel":
        return cls(
            distance=step.distance,
            duration=step.duration,
            instructions=step.instructions,
            polyline=step.polyline,
            start_location=LocationModel.from_domain(step.start_location),
            end_location=LocationModel.from_domain(step.end_location),
        )


class OptimizeRequest(BaseModel):
    orders: List[OrderModel]
    vehicles: List[VehicleModel]
    depot: Optional[LocationModel] = Field(
        default=None,
        description="Depot location. Defaults to the configured depot.",
    )
    start_time: Optional[datetime] = None
    load_id: Optional[str] = None


class UnassignedOrderModel(BaseModel):
    order_id: str
    demand: float
    max_capacity: float
    reason: str


class OptimizeResponse(BaseModel):
    routes: List[RouteModel]
    unassigned: List[UnassignedOrderModel]
    metadata: dict


class GeocodeRequest(BaseModel):
    address: AddressInput


class DistanceRequest(BaseModel):
    origin: LocationModel
    destination: LocationModel


class DistanceResponse(BaseModel):
    distance: float = Field(..., description="Kilometres.")
    duration: float = Field(..., description="Seconds.")
