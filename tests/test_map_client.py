import httpx
import pytest

from src.route_service.config import Settings
from src.route_service.models.domain import Location
from src.route_service.services.maps.cache import GeoCache
from src.route_service.services.maps.client import UNREACHABLE, MapOracleClient
from src.route_service.services.maps import oracle as oracle_module
from src.route_service.services.maps.oracle import GoogleMapsOracle, HaversineOracle
from src.route_service.services.routing.errors import (
    DirectionsError,
    DistanceMatrixError,
    GeocodingError,
)

RIYADH = Location(24.7136, 46.6753)
DIRIYAH = Location(24.7340, 46.5750)
KHARJ = Location(24.1500, 47.3050)


class CountingOracle(HaversineOracle):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.calls = {"geocode": 0, "directions": 0, "distance_matrix": 0}

    def geocode(self, address):
        self.calls["geocode"] += 1
        return super().geocode(address)

    def directions(self, origin, destination, waypoints=()):
        self.calls["directions"] += 1
        return super().directions(origin, destination, waypoints)

    def distance_matrix(self, origins, destinations):
        self.calls["distance_matrix"] += 1
        return super().distance_matrix(origins, destinations)


class PartialMatrixOracle(HaversineOracle):
    """Marks every cell from origin 0 to destination 1 as NOT_FOUND."""

    def distance_matrix(self, origins, destinations):
        payload = super().distance_matrix(origins, destinations)
        payload["rows"][0]["elements"][1] = {"status": "NOT_FOUND"}
        return payload


def _google(handler, **kwargs) -> GoogleMapsOracle:
    return GoogleMapsOracle(
        base_url="https://maps.example.test/api",
        api_key="test-key",
        timeout=1.0,
        max_retries=kwargs.pop("max_retries", 1),
        backoff_seconds=kwargs.pop("backoff_seconds", 0.0),
        transport=httpx.MockTransport(handler),
    )


def test_geocode_hits_oracle_once_per_address() -> None:
    oracle = CountingOracle(gazetteer={"King Fahd Rd, Riyadh, RI 11564": RIYADH})
    client = MapOracleClient(oracle, GeoCache())

    first = client.geocode_address("King Fahd Rd, Riyadh, RI 11564")
    second = client.geocode_address("king fahd rd  riyadh ri 11564")

    assert first == RIYADH
    assert second == RIYADH
    assert oracle.calls["geocode"] == 1


def test_geocode_without_results_raises() -> None:
    client = MapOracleClient(HaversineOracle(), GeoCache())

    with pytest.raises(GeocodingError):
        client.geocode_address("Nowhere Lane, Atlantis")


def test_directions_are_reported_in_kilometres() -> None:
    client = MapOracleClient(HaversineOracle(average_speed_kmh=60.0), GeoCache())

    directions = client.get_directions(RIYADH, KHARJ, [DIRIYAH])

    assert directions.distance > 80
    assert len(directions.steps) == 2
    assert directions.polyline
    assert directions.duration == pytest.approx(directions.distance / 60.0 * 3600.0)


def test_distance_matrix_marks_failed_cells_unreachable() -> None:
    client = MapOracleClient(PartialMatrixOracle(), GeoCache())

    matrix = client.get_distance_matrix([RIYADH, DIRIYAH], [RIYADH, DIRIYAH])

    assert matrix.distances[0][1] == UNREACHABLE
    assert matrix.durations[0][1] == UNREACHABLE
    assert matrix.distances[1][0] > 0
    assert not matrix.is_reachable(0, 1)
    assert matrix.unreachable_count == 1


def test_distance_matrix_is_cached_as_a_whole() -> None:
    oracle = CountingOracle()
    client = MapOracleClient(oracle, GeoCache())

    client.get_distance_matrix([RIYADH, DIRIYAH], [KHARJ])
    client.get_distance_matrix([RIYADH, DIRIYAH], [KHARJ])

    assert oracle.calls["distance_matrix"] == 1


def test_large_matrices_are_chunked_and_stitched() -> None:
    config = Settings(maps_matrix_chunk_size=2, maps_max_parallel_requests=2)
    oracle = CountingOracle()
    client = MapOracleClient(oracle, GeoCache(), config)
    points = [Location(24.70 + index * 0.01, 46.60 + index * 0.01) for index in range(5)]

    chunked = client.build_matrix(points)
    whole = MapOracleClient(HaversineOracle(), GeoCache()).build_matrix(points)

    assert oracle.calls["distance_matrix"] == 9
    for chunked_row, whole_row in zip(chunked.distances, whole.distances):
        assert chunked_row == pytest.approx(whole_row)
    assert all(chunked.distances[index][index] == 0.0 for index in range(5))


def test_empty_matrix_does_not_call_oracle() -> None:
    oracle = CountingOracle()
    client = MapOracleClient(oracle, GeoCache())

    matrix = client.get_distance_matrix([], [RIYADH])

    assert matrix.distances == []
    assert oracle.calls["distance_matrix"] == 0


def test_invalidate_route_caches_drops_directions_and_matrices() -> None:
    oracle = CountingOracle()
    client = MapOracleClient(oracle, GeoCache())
    client.get_directions(RIYADH, DIRIYAH)
    client.get_distance_matrix([RIYADH], [DIRIYAH])

    assert client.invalidate_route_caches() == 2

    client.get_directions(RIYADH, DIRIYAH)
    assert oracle.calls["directions"] == 2


def test_turn_by_turn_yields_empty_leg_on_failure() -> None:
    class NoRouteOracle(HaversineOracle):
        def directions(self, origin, destination, waypoints=()):
            if destination == KHARJ:
                return {"status": "ZERO_RESULTS", "routes": []}
            return super().directions(origin, destination, waypoints)

    client = MapOracleClient(NoRouteOracle(), GeoCache())

    legs = client.generate_turn_by_turn_directions([RIYADH, DIRIYAH, KHARJ])

    assert len(legs) == 2
    assert len(legs[0]) == 1
    assert legs[1] == []


def test_google_oracle_parses_distance_matrix_elements() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/distancematrix/json")
        assert request.url.params["key"] == "test-key"
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "rows": [
                    {
                        "elements": [
                            {"status": "OK", "distance": {"value": 0}, "duration": {"value": 0}},
                            {"status": "ZERO_RESULTS"},
                        ]
                    },
                    {
                        "elements": [
                            {"status": "OK", "distance": {"value": 2500}, "duration": {"value": 300}},
                            {"status": "OK", "distance": {"value": 0}, "duration": {"value": 0}},
                        ]
                    },
                ],
            },
        )

    client = MapOracleClient(_google(handler), GeoCache())

    matrix = client.get_distance_matrix([RIYADH, DIRIYAH], [RIYADH, DIRIYAH])

    assert matrix.distances[0][1] == UNREACHABLE
    assert matrix.distances[1][0] == pytest.approx(2.5)
    assert matrix.durations[1][0] == pytest.approx(300.0)


def test_google_oracle_timeouts_become_typed_errors() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = MapOracleClient(_google(handler, max_retries=2), GeoCache())

    with pytest.raises(DistanceMatrixError):
        client.get_distance_matrix([RIYADH], [DIRIYAH])
    assert len(attempts) == 3


def test_google_oracle_retries_server_errors() -> None:
    responses = iter(
        [
            httpx.Response(503),
            httpx.Response(
                200,
                json={
                    "status": "OK",
                    "results": [{"geometry": {"location": {"lat": 24.7136, "lng": 46.6753}}}],
                },
            ),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    client = MapOracleClient(_google(handler), GeoCache())

    assert client.geocode_address("Riyadh") == RIYADH


def test_google_oracle_backs_off_exponentially_on_server_errors(monkeypatch) -> None:
    waits: list[float] = []
    monkeypatch.setattr(oracle_module.time, "sleep", waits.append)
    responses = iter(
        [
            httpx.Response(429),
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(
                200,
                json={
                    "status": "OK",
                    "results": [{"geometry": {"location": {"lat": 24.7136, "lng": 46.6753}}}],
                },
            ),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    client = MapOracleClient(_google(handler, max_retries=3, backoff_seconds=0.5), GeoCache())

    assert client.geocode_address("Riyadh") == RIYADH
    assert waits == [0.5, 1.0, 2.0]


def test_google_oracle_rejects_denied_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"})

    oracle = _google(handler)

    with pytest.raises(DirectionsError, match="bad key"):
        MapOracleClient(oracle, GeoCache()).get_directions(RIYADH, DIRIYAH)
    assert oracle.check_health() is False
