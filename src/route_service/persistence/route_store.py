"""Route entity stores."""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Optional, Protocol

from ..models.domain import (
    Address,
    DeliveryStatus,
    Location,
    Route,
    RouteStatus,
    RouteStop,
)

logger = logging.getLogger(__name__)


class RouteStore(Protocol):
    def get(self, route_id: str) -> Optional[Route]: ...

    def put(self, route: Route) -> Route: ...

    def list_all(self) -> list[Route]: ...

    def list_by_status(self, status: RouteStatus) -> list[Route]: ...

    def list_by_vehicle(self, vehicle_id: str) -> list[Route]: ...

    def find_by_load(self, load_id: str) -> Optional[Route]: ...


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def stop_to_record(stop: RouteStop) -> dict[str, Any]:
    address = stop.address
    return {
        "order_id": stop.order_id,
        "sequence": stop.sequence,
        "address": {
            "street": address.street,
            "city": address.city,
            "state": address.state,
            "zip_code": address.zip_code,
            "latitude": address.coordinates.latitude,
            "longitude": address.coordinates.longitude,
        },
        "estimated_arrival": _iso(stop.estimated_arrival),
        "actual_arrival": _iso(stop.actual_arrival),
        "delivery_status": stop.delivery_status.value if stop.delivery_status else None,
        "delivery_proof": stop.delivery_proof,
    }


def stop_from_record(record: dict[str, Any]) -> RouteStop:
    address = record["address"]
    return RouteStop(
        order_id=record["order_id"],
        sequence=int(record["sequence"]),
        address=Address(
            street=address["street"],
            city=address["city"],
            state=address["state"],
            zip_code=address["zip_code"],
            coordinates=Location(latitude=float(address["latitude"]), longitude=float(address["longitude"])),
        ),
        estimated_arrival=_parse_time(record.get("estimated_arrival")),
        actual_arrival=_parse_time(record.get("actual_arrival")),
        delivery_status=DeliveryStatus(record["delivery_status"]) if record.get("delivery_status") else None,
        delivery_proof=record.get("delivery_proof"),
    )


def route_to_record(route: Route) -> dict[str, Any]:
    return {
        "id": route.id,
        "load_id": route.load_id,
        "vehicle_id": route.vehicle_id,
        "status": route.status.value,
        "total_distance": route.total_distance,
        "estimated_duration": route.estimated_duration,
        "stops": [stop_to_record(stop) for stop in route.stops],
        "created_at": _iso(route.created_at),
        "updated_at": _iso(route.updated_at),
    }


def route_from_record(record: dict[str, Any]) -> Route:
    return Route(
        id=record["id"],
        load_id=record["load_id"],
        vehicle_id=record["vehicle_id"],
        status=RouteStatus(record["status"]),
        total_distance=float(record["total_distance"]),
        estimated_duration=float(record["estimated_duration"]),
        stops=[stop_from_record(stop) for stop in record.get("stops") or []],
        created_at=_parse_time(record["created_at"]),
        updated_at=_parse_time(record["updated_at"]),
    )


class InMemoryRouteStore:
    """Thread-safe dict-backed store; hands out copies so callers cannot mutate stored routes."""

    def __init__(self) -> None:
        self._routes: dict[str, Route] = {}
        self._lock = threading.Lock()

    def get(self, route_id: str) -> Optional[Route]:
        with self._lock:
            route = self._routes.get(route_id)
            return copy.deepcopy(route) if route else None

    def put(self, route: Route) -> Route:
        with self._lock:
            self._routes[route.id] = copy.deepcopy(route)
        return route

    def _select(self, predicate) -> list[Route]:
        with self._lock:
            matches = [copy.deepcopy(route) for route in self._routes.values() if predicate(route)]
        return sorted(matches, key=lambda route: route.created_at, reverse=True)

    def list_all(self) -> list[Route]:
        return self._select(lambda route: True)

    def list_by_status(self, status: RouteStatus) -> list[Route]:
        return self._select(lambda route: route.status == status)

    def list_by_vehicle(self, vehicle_id: str) -> list[Route]:
        return self._select(lambda route: route.vehicle_id == vehicle_id)

    def find_by_load(self, load_id: str) -> Optional[Route]:
        matches = self._select(lambda route: route.load_id == load_id)
        return matches[0] if matches else None


class SupabaseRouteStore:
    """Routes persisted in a Supabase table with stops in a JSON column."""

    def __init__(self, client: Any, table: str = "routes") -> None:
        self.client = client
        self.table = table

    def _rows(self, response: Any) -> list[Route]:
        return [route_from_record(row) for row in (response.data or [])]

    def get(self, route_id: str) -> Optional[Route]:
        response = self.client.table(self.table).select("*").eq("id", route_id).limit(1).execute()
        routes = self._rows(response)
        return routes[0] if routes else None

    def put(self, route: Route) -> Route:
        try:
            self.client.table(self.table).upsert(route_to_record(route)).execute()
        except Exception as exc:
            logger.error(f"Failed to save route {route.id} to database: {exc}")
            raise
        return route

    def list_all(self) -> list[Route]:
        response = self.client.table(self.table).select("*").order("created_at", desc=True).execute()
        return self._rows(response)

    def list_by_status(self, status: RouteStatus) -> list[Route]:
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("status", status.value)
            .order("created_at", desc=True)
            .execute()
        )
        return self._rows(response)

    def list_by_vehicle(self, vehicle_id: str) -> list[Route]:
        response = (
            self.client.table(self.table)
            .select("*")
            .eq("vehicle_id", vehicle_id)
            .order("created_at", desc=True)
            .execute()
        )
        return self._rows(response)

    def find_by_load(self, load_id: str) -> Optional[Route]:
        response = self.client.table(self.table).select("*").eq("load_id", load_id).limit(1).execute()
        routes = self._rows(response)
        return routes[0] if routes else None
