"""Route lifecycle endpoints."""

from __future__ import annotations

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...config import settings
from ...models.domain import Location, RouteStatus
from ...schemas.routing import (
    CreateRouteRequest,
    DirectionStepModel,
    DistanceRequest,
    DistanceResponse,
    GeocodeRequest,
    LocationModel,
    MapDataResponse,
    OptimizeRequest,
    OptimizeResponse,
    OrdersRequest,
    ReorderStopsRequest,
    RouteModel,
    StatusUpdateRequest,
    TimeWindowConflictsResponse,
    TravelTimesRequest,
    UnassignedOrderModel,
    UpdateStopsRequest,
    WaypointModel,
)
from ...services.routing.errors import (
    InvalidStopOrderError,
    MapOracleError,
    NoVehiclesAvailableError,
    RouteNotFoundError,
)
from ...services.routing.service import RouteLifecycleManager
from ..dependencies import get_route_manager

router = APIRouter(prefix="/routes", tags=["routes"])


def _raise_http(exc: Exception, action: str) -> NoReturn:
    if isinstance(exc, RouteNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (InvalidStopOrderError, NoVehiclesAvailableError, ValueError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, MapOracleError):
        logging.error(f"Map service failure while trying to {action}: {exc}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    logging.exception(f"Error trying to {action}: {exc}")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(exc)}",
    ) from exc


@router.post("/optimize", response_model=OptimizeResponse, status_code=status.HTTP_200_OK)
def optimize(
    payload: OptimizeRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> OptimizeResponse:
    """Partition orders among the vehicles and persist the planned routes."""
    depot = (
        payload.depot.to_domain()
        if payload.depot
        else Location(latitude=settings.depot_latitude, longitude=settings.depot_longitude)
    )
    try:
        result = manager.plan_routes(
            orders=[order.to_domain() for order in payload.orders],
            vehicles=[vehicle.to_domain() for vehicle in payload.vehicles],
            depot=depot,
            start_time=payload.start_time,
            load_id=payload.load_id,
        )
    except Exception as exc:
        _raise_http(exc, "optimize routes")
    return OptimizeResponse(
        routes=[RouteModel.from_domain(route) for route in result.routes],
        unassigned=[UnassignedOrderModel(**error.to_dict()) for error in result.unassigned],
        metadata=result.metadata,
    )


@router.post("/geocode", response_model=LocationModel, status_code=status.HTTP_200_OK)
def geocode(
    payload: GeocodeRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> LocationModel:
    try:
        location = manager.geocode_address(payload.address.to_query())
    except Exception as exc:
        _raise_http(exc, "geocode address")
    return LocationModel.from_domain(location)


@router.post("/distance", response_model=DistanceResponse, status_code=status.HTTP_200_OK)
def distance(
    payload: DistanceRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> DistanceResponse:
    try:
        result = manager.calculate_distance(payload.origin.to_domain(), payload.destination.to_domain())
    except Exception as exc:
        _raise_http(exc, "calculate distance")
    return DistanceResponse(**result)


@router.post("", response_model=RouteModel, status_code=status.HTTP_201_CREATED)
def create_route(
    payload: CreateRouteRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.create_route(
            load_id=payload.load_id,
            vehicle_id=payload.vehicle_id,
            stops=[stop.to_domain() for stop in payload.stops],
            start_time=payload.start_time,
        )
    except Exception as exc:
        _raise_http(exc, "create route")
    return RouteModel.from_domain(route)


@router.get("", response_model=List[RouteModel], status_code=status.HTTP_200_OK)
def list_routes(
    route_status: Optional[RouteStatus] = Query(default=None, alias="status"),
    vehicle_id: Optional[str] = Query(default=None),
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> List[RouteModel]:
    """List routes, newest first, optionally filtered by status or vehicle."""
    if vehicle_id:
        routes = manager.get_routes_by_vehicle_id(vehicle_id)
        if route_status is not None:
            routes = [route for route in routes if route.status == route_status]
    else:
        routes = manager.list_routes(route_status)
    return [RouteModel.from_domain(route) for route in routes]


@router.get("/by-load/{load_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route_by_load(
    load_id: str,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    route = manager.get_route_by_load_id(load_id)
    if route is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No route found for load {load_id}",
        )
    return RouteModel.from_domain(route)


@router.get("/{route_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route(
    route_id: str,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.get_route_by_id(route_id)
    except Exception as exc:
        _raise_http(exc, "load route")
    return RouteModel.from_domain(route)


@router.put("/{route_id}/stops", response_model=RouteModel, status_code=status.HTTP_200_OK)
def update_stops(
    route_id: str,
    payload: UpdateStopsRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.update_route_stops(
            route_id, [stop.to_domain() for stop in payload.stops], payload.start_time
        )
    except Exception as exc:
        _raise_http(exc, "update route stops")
    return RouteModel.from_domain(route)


@router.put("/{route_id}/reorder", response_model=RouteModel, status_code=status.HTTP_200_OK)
def reorder_stops(
    route_id: str,
    payload: ReorderStopsRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.reorder_route_stops(route_id, payload.stop_order, payload.start_time)
    except Exception as exc:
        _raise_http(exc, "reorder route stops")
    return RouteModel.from_domain(route)


@router.put("/{route_id}/status", response_model=RouteModel, status_code=status.HTTP_200_OK)
def update_status(
    route_id: str,
    payload: StatusUpdateRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.update_route_status(route_id, payload.status)
    except Exception as exc:
        _raise_http(exc, "update route status")
    return RouteModel.from_domain(route)


@router.post("/{route_id}/travel-times", response_model=RouteModel, status_code=status.HTTP_200_OK)
def recalculate_travel_times(
    route_id: str,
    payload: TravelTimesRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    try:
        route = manager.recalculate_travel_times(route_id, payload.start_time)
    except Exception as exc:
        _raise_http(exc, "recalculate travel times")
    return RouteModel.from_domain(route)


@router.post(
    "/{route_id}/time-window-conflicts",
    response_model=TimeWindowConflictsResponse,
    status_code=status.HTTP_200_OK,
)
def time_window_conflicts(
    route_id: str,
    payload: OrdersRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> TimeWindowConflictsResponse:
    try:
        conflicts = manager.validate_time_windows(route_id, [order.to_domain() for order in payload.orders])
    except Exception as exc:
        _raise_http(exc, "validate time windows")
    return TimeWindowConflictsResponse(conflicts=conflicts)


@router.post("/{route_id}/optimize-sequence", response_model=RouteModel, status_code=status.HTTP_200_OK)
def optimize_sequence(
    route_id: str,
    payload: OrdersRequest,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> RouteModel:
    """Reorder stops by delivery-window start."""
    try:
        route = manager.optimize_route_sequence(route_id, [order.to_domain() for order in payload.orders])
    except Exception as exc:
        _raise_http(exc, "optimize route sequence")
    return RouteModel.from_domain(route)


@router.get("/{route_id}/alternatives", response_model=List[RouteModel], status_code=status.HTTP_200_OK)
def alternative_routes(
    route_id: str,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> List[RouteModel]:
    """Reversed and end-swapped orderings of a route; nothing is saved."""
    try:
        alternatives = manager.suggest_alternative_routes(route_id)
    except Exception as exc:
        _raise_http(exc, "suggest alternative routes")
    return [RouteModel.from_domain(route) for route in alternatives]


@router.get("/{route_id}/map-data", response_model=MapDataResponse, status_code=status.HTTP_200_OK)
def map_data(
    route_id: str,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> MapDataResponse:
    try:
        data = manager.generate_route_map_data(route_id)
    except Exception as exc:
        _raise_http(exc, "generate route map data")
    return MapDataResponse(
        polyline=data["polyline"],
        path=data["path"],
        waypoints=[
            WaypointModel(
                location=LocationModel.from_domain(waypoint["location"]),
                order_id=waypoint["order_id"],
                sequence=waypoint["sequence"],
                estimated_arrival=waypoint["estimated_arrival"],
            )
            for waypoint in data["waypoints"]
        ],
    )


@router.get(
    "/{route_id}/directions",
    response_model=List[List[DirectionStepModel]],
    status_code=status.HTTP_200_OK,
)
def turn_by_turn_directions(
    route_id: str,
    manager: RouteLifecycleManager = Depends(get_route_manager),
) -> List[List[DirectionStepModel]]:
    try:
        legs = manager.generate_turn_by_turn_directions(route_id)
    except Exception as exc:
        _raise_http(exc, "generate turn-by-turn directions")
    return [[DirectionStepModel.from_domain(step) for step in leg] for leg in legs]
