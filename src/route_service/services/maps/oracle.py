"""Transports for the external mapping oracle.

The oracle speaks the Google Maps web-service JSON shapes: distances in
metres, durations in seconds, per-element status strings in distance
matrices. ``MapOracleClient`` consumes these raw payloads.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping, Optional, Protocol, Sequence, Type

import httpx

from ...config import Settings, settings as default_settings
from ...models.domain import Location
from ..geospatial import encode_polyline, haversine_km
from ..routing.errors import DirectionsError, DistanceMatrixError, GeocodingError, MapOracleError
from .cache import normalize_address

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
# Top-level statuses that mean "answered, nothing found" rather than a failed call.
EMPTY_RESULT_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}


class MapOracle(Protocol):
    def geocode(self, address: str) -> dict: ...

    def directions(
        self, origin: Location, destination: Location, waypoints: Sequence[Location] = ()
    ) -> dict: ...

    def distance_matrix(self, origins: Sequence[Location], destinations: Sequence[Location]) -> dict: ...


def _latlng(location: Location) -> str:
    return f"{location.latitude},{location.longitude}"


class GoogleMapsOracle:
    """HTTP client for Google-style geocode, directions and distance-matrix services."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or default_settings.maps_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else default_settings.maps_api_key
        if not self.api_key:
            logger.warning("Maps API key not configured. Requests will likely be denied by the provider.")
        self.timeout = timeout if timeout is not None else default_settings.maps_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else default_settings.maps_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else default_settings.maps_backoff_seconds
        )
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
            transport=self._transport,
        )

    def _get_json(self, endpoint: str, params: Mapping[str, str], error_type: Type[MapOracleError]) -> dict:
        """GET an oracle endpoint with bounded retries, translating failures into error_type."""
        url = f"{self.base_url}/{endpoint}/json"
        query = dict(params)
        if self.api_key:
            query["key"] = self.api_key

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=query)
                    response.raise_for_status()
                    data = response.json()
                    break
                except httpx.HTTPStatusError as exc:
                    attempt += 1
                    if exc.response.status_code not in RETRYABLE_STATUS_CODES or attempt > self.max_retries:
                        raise error_type(
                            f"Maps {endpoint} request failed with HTTP {exc.response.status_code}"
                        ) from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Maps {endpoint} HTTP {exc.response.status_code}, retrying in {wait_time:.1f}s")
                    time.sleep(wait_time)
                except httpx.TimeoutException as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Maps {endpoint} request timed out after {attempt} attempts: {exc}")
                        raise error_type(f"Maps {endpoint} request timed out after {self.timeout}s") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(
                        f"Maps {endpoint} timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})"
                    )
                    time.sleep(wait_time)
                except httpx.TransportError as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise error_type(f"Failed to reach maps service at {self.base_url}: {exc}") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Maps {endpoint} network error, retrying in {wait_time:.1f}s: {exc}")
                    time.sleep(wait_time)
                except ValueError as exc:
                    raise error_type(f"Maps {endpoint} returned a non-JSON body") from exc
        finally:
            client.close()

        status = data.get("status", "OK")
        if status != "OK" and status not in EMPTY_RESULT_STATUSES:
            message = data.get("error_message") or status
            raise error_type(f"Maps {endpoint} request failed: {message}")
        return data

    def geocode(self, address: str) -> dict:
        return self._get_json("geocode", {"address": address}, GeocodingError)

    def directions(
        self, origin: Location, destination: Location, waypoints: Sequence[Location] = ()
    ) -> dict:
        params = {
            "origin": _latlng(origin),
            "destination": _latlng(destination),
            "mode": "driving",
            "units": "metric",
        }
        if waypoints:
            params["waypoints"] = "|".join(_latlng(point) for point in waypoints)
        return self._get_json("directions", params, DirectionsError)

    def distance_matrix(self, origins: Sequence[Location], destinations: Sequence[Location]) -> dict:
        params = {
            "origins": "|".join(_latlng(point) for point in origins),
            "destinations": "|".join(_latlng(point) for point in destinations),
            "mode": "driving",
            "units": "metric",
        }
        return self._get_json("distancematrix", params, DistanceMatrixError)

    def check_health(self) -> bool:
        try:
            self.geocode("1600 Amphitheatre Parkway, Mountain View, CA")
            return True
        except MapOracleError:
            return False


class HaversineOracle:
    """Offline oracle using great-circle distance at a fixed average speed.

    Geocoding answers only from the supplied gazetteer of normalized address
    strings; anything else yields ZERO_RESULTS.
    """

    def __init__(
        self,
        average_speed_kmh: float | None = None,
        gazetteer: Optional[Mapping[str, Location]] = None,
    ) -> None:
        self.average_speed_kmh = average_speed_kmh or default_settings.haversine_average_speed_kmh
        self.gazetteer = {normalize_address(key): value for key, value in (gazetteer or {}).items()}

    def _leg(self, origin: Location, destination: Location) -> tuple[float, float]:
        distance_km = haversine_km(origin.latitude, origin.longitude, destination.latitude, destination.longitude)
        duration_s = distance_km / self.average_speed_kmh * 3600.0
        return distance_km * 1000.0, duration_s

    def geocode(self, address: str) -> dict:
        location = self.gazetteer.get(normalize_address(address))
        if location is None:
            return {"status": "ZERO_RESULTS", "results": []}
        return {
            "status": "OK",
            "results": [
                {
                    "formatted_address": address,
                    "geometry": {"location": {"lat": location.latitude, "lng": location.longitude}},
                }
            ],
        }

    def directions(
        self, origin: Location, destination: Location, waypoints: Sequence[Location] = ()
    ) -> dict:
        points = [origin, *waypoints, destination]
        legs = []
        for start, end in zip(points, points[1:]):
            meters, seconds = self._leg(start, end)
            start_ll = {"lat": start.latitude, "lng": start.longitude}
            end_ll = {"lat": end.latitude, "lng": end.longitude}
            legs.append(
                {
                    "distance": {"value": meters},
                    "duration": {"value": seconds},
                    "steps": [
                        {
                            "distance": {"value": meters},
                            "duration": {"value": seconds},
                            "html_instructions": f"Head to {end.latitude:.6f},{end.longitude:.6f}",
                            "polyline": {"points": encode_polyline([start.rounded(), end.rounded()])},
                            "start_location": start_ll,
                            "end_location": end_ll,
                        }
                    ],
                }
            )
        overview = encode_polyline([point.rounded() for point in points])
        return {"status": "OK", "routes": [{"overview_polyline": {"points": overview}, "legs": legs}]}

    def distance_matrix(self, origins: Sequence[Location], destinations: Sequence[Location]) -> dict:
        rows = []
        for origin in origins:
            elements = []
            for destination in destinations:
                meters, seconds = self._leg(origin, destination)
                elements.append({"status": "OK", "distance": {"value": meters}, "duration": {"value": seconds}})
            rows.append({"elements": elements})
        return {"status": "OK", "rows": rows}

    def check_health(self) -> bool:
        return True


def build_oracle(config: Settings | None = None) -> MapOracle:
    config = config or default_settings
    if config.map_provider == "google":
        return GoogleMapsOracle(
            base_url=config.maps_base_url,
            api_key=config.maps_api_key,
            timeout=config.maps_timeout_seconds,
            max_retries=config.maps_max_retries,
            backoff_seconds=config.maps_backoff_seconds,
        )
    return HaversineOracle(average_speed_kmh=config.haversine_average_speed_kmh)
