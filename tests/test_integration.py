import pytest
from fastapi.testclient import TestClient

from src.route_service.api.dependencies import get_route_manager
from src.route_service.main import create_app
from src.route_service.models.domain import Location
from src.route_service.persistence.route_store import InMemoryRouteStore
from src.route_service.services.maps.cache import GeoCache
from src.route_service.services.maps.client import MapOracleClient
from src.route_service.services.maps.oracle import HaversineOracle
from src.route_service.services.routing.service import RouteLifecycleManager

START = "2024-03-01T09:00:00+00:00"


def _address(oid: str, lat: float, lon: float) -> dict:
    return {
        "street": f"{oid} Street",
        "city": "Riyadh",
        "state": "RI",
        "zip_code": "11564",
        "coordinates": {"latitude": lat, "longitude": lon},
    }


def _stop(oid: str, sequence: int, lat: float, lon: float) -> dict:
    return {"order_id": oid, "sequence": sequence, "address": _address(oid, lat, lon)}


def _order(oid: str, lat: float, lon: float, weight: float = 10.0, window=None) -> dict:
    order = {
        "id": oid,
        "delivery_address": _address(oid, lat, lon),
        "packages": [
            {"id": f"{oid}-p", "weight": weight, "dimensions": {"length": 1, "width": 1, "height": 1}}
        ],
    }
    if window:
        order["time_window"] = {"start_time": window[0], "end_time": window[1]}
    return order


@pytest.fixture
def api_client() -> TestClient:
    cache = GeoCache()
    oracle = HaversineOracle(gazetteer={"1 King Fahd Rd, Riyadh, RI 11564": Location(24.7136, 46.6753)})
    manager = RouteLifecycleManager(
        store=InMemoryRouteStore(), cache=cache, maps=MapOracleClient(oracle, cache)
    )
    app = create_app()
    app.dependency_overrides[get_route_manager] = lambda: manager
    return TestClient(app)


def _create(api_client: TestClient) -> dict:
    response = api_client.post(
        "/api/routes",
        json={
            "load_id": "load-1",
            "vehicle_id": "v1",
            "start_time": START,
            "stops": [
                _stop("o1", 0, 24.71, 46.67),
                _stop("o2", 1, 24.72, 46.68),
                _stop("o3", 2, 24.73, 46.69),
            ],
        },
    )
    assert response.status_code == 201
    return response.json()


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/api/health").json() == {"status": "ok"}
    maps = api_client.get("/api/health/maps").json()
    assert maps["service"] == "maps"
    assert "healthy" in maps
    assert api_client.get("/api/health/database").json()["backend"] == "memory"


def test_create_and_fetch_route(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.get(f"/api/routes/{created['id']}")

    assert response.status_code == 200
    body = response.json()
    assert [stop["order_id"] for stop in body["stops"]] == ["o1", "o2", "o3"]
    assert body["status"] == "planned"
    assert body["total_distance"] > 0


def test_unknown_route_is_404(api_client: TestClient) -> None:
    response = api_client.get("/api/routes/nope")

    assert response.status_code == 404
    assert "nope" in response.json()["detail"]


def test_reorder_route(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.put(
        f"/api/routes/{created['id']}/reorder",
        json={"stop_order": ["o3", "o1"], "start_time": START},
    )

    assert response.status_code == 200
    stops = response.json()["stops"]
    assert [stop["order_id"] for stop in stops] == ["o3", "o1", "o2"]
    assert [stop["sequence"] for stop in stops] == [0, 1, 2]


def test_reorder_with_unknown_order_is_400(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.put(f"/api/routes/{created['id']}/reorder", json={"stop_order": ["o9"]})

    assert response.status_code == 400
    assert "o9" in response.json()["detail"]


def test_update_stops_and_status(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.put(
        f"/api/routes/{created['id']}/stops",
        json={"stops": [_stop("o2", 3, 24.72, 46.68), _stop("o1", 1, 24.71, 46.67)]},
    )
    assert response.status_code == 200
    assert [stop["sequence"] for stop in response.json()["stops"]] == [0, 1]
    assert [stop["order_id"] for stop in response.json()["stops"]] == ["o1", "o2"]

    response = api_client.put(f"/api/routes/{created['id']}/status", json={"status": "dispatched"})
    assert response.status_code == 200
    assert response.json()["status"] == "dispatched"

    listed = api_client.get("/api/routes", params={"status": "dispatched"}).json()
    assert [route["id"] for route in listed] == [created["id"]]
    assert api_client.get("/api/routes", params={"vehicle_id": "v2"}).json() == []


def test_time_window_conflicts(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.post(
        f"/api/routes/{created['id']}/time-window-conflicts",
        json={
            "orders": [
                _order("o1", 24.71, 46.67, window=("2024-03-01T10:00:00+00:00", "2024-03-01T10:30:00+00:00"))
            ]
        },
    )

    assert response.status_code == 200
    conflicts = response.json()["conflicts"]
    assert len(conflicts) == 1
    assert "before the time window starts" in conflicts[0]


def test_travel_times_and_map_data(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.post(
        f"/api/routes/{created['id']}/travel-times", json={"start_time": "2024-03-01T11:00:00+00:00"}
    )
    assert response.status_code == 200
    assert response.json()["stops"][0]["estimated_arrival"].startswith("2024-03-01T11:00:00")

    map_data = api_client.get(f"/api/routes/{created['id']}/map-data").json()
    assert map_data["polyline"]
    assert [waypoint["order_id"] for waypoint in map_data["waypoints"]] == ["o1", "o2", "o3"]

    legs = api_client.get(f"/api/routes/{created['id']}/directions").json()
    assert len(legs) == 2


def test_optimize_reports_unassigned_orders(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/routes/optimize",
        json={
            "orders": [
                _order("o1", 24.80, 46.70),
                _order("o2", 24.81, 46.70),
                _order("big", 24.80, 46.71, weight=500),
            ],
            "vehicles": [{"id": "v1", "capacity": {"max_weight": 100}}],
            "depot": {"latitude": 24.70, "longitude": 46.60},
            "start_time": START,
            "load_id": "load-9",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["routes"]) == 1
    assert sorted(stop["order_id"] for stop in body["routes"][0]["stops"]) == ["o1", "o2"]
    assert [item["order_id"] for item in body["unassigned"]] == ["big"]
    assert body["metadata"]["status"] == "partial"
    assert api_client.get("/api/routes/by-load/load-9").status_code == 200


def test_optimize_without_vehicles_is_400(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/routes/optimize",
        json={"orders": [_order("o1", 24.80, 46.70)], "vehicles": []},
    )

    assert response.status_code == 400


def test_geocode_and_distance(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/routes/geocode",
        json={"address": {"street": "1 King Fahd Rd", "city": "Riyadh", "state": "RI", "zip_code": "11564"}},
    )
    assert response.status_code == 200
    assert response.json() == {"latitude": 24.7136, "longitude": 46.6753}

    missing = api_client.post(
        "/api/routes/geocode",
        json={"address": {"street": "Nowhere", "city": "Atlantis", "state": "XX", "zip_code": "00000"}},
    )
    assert missing.status_code == 502

    distance = api_client.post(
        "/api/routes/distance",
        json={
            "origin": {"latitude": 24.71, "longitude": 46.67},
            "destination": {"latitude": 24.73, "longitude": 46.69},
        },
    ).json()
    assert distance["distance"] > 0
    assert distance["duration"] > 0


def test_time_window_mixing_naive_and_aware_bounds(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.post(
        f"/api/routes/{created['id']}/time-window-conflicts",
        json={
            "orders": [_order("o1", 24.71, 46.67, window=("2024-03-01T10:00:00", "2024-03-01T10:30:00+00:00"))]
        },
    )
    assert response.status_code == 200
    assert len(response.json()["conflicts"]) == 1

    inverted = api_client.post(
        f"/api/routes/{created['id']}/time-window-conflicts",
        json={
            "orders": [_order("o1", 24.71, 46.67, window=("2024-03-01T11:00:00", "2024-03-01T10:30:00+00:00"))]
        },
    )
    assert inverted.status_code == 422


def test_alternative_routes_are_suggested_but_not_saved(api_client: TestClient) -> None:
    created = _create(api_client)

    response = api_client.get(f"/api/routes/{created['id']}/alternatives")

    assert response.status_code == 200
    alternatives = response.json()
    assert [alt["id"] for alt in alternatives] == [f"{created['id']}-alt1"]
    assert [stop["order_id"] for stop in alternatives[0]["stops"]] == ["o3", "o2", "o1"]
    assert [stop["sequence"] for stop in alternatives[0]["stops"]] == [0, 1, 2]

    stored = api_client.get(f"/api/routes/{created['id']}").json()
    assert [stop["order_id"] for stop in stored["stops"]] == ["o1", "o2", "o3"]
    assert api_client.get("/api/routes/unknown/alternatives").status_code == 404
