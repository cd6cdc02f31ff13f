"""Arrival-time estimation and stop re-sequencing for a single route."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import Order, Route, RouteStop, utc_now
from ..maps.client import DistanceMatrix, MapOracleClient
from .errors import InvalidStopOrderError
from .models import RouteMetrics

logger = logging.getLogger(__name__)


def sorted_by_sequence(stops: Iterable[RouteStop]) -> list[RouteStop]:
    return sorted(stops, key=lambda stop: stop.sequence)


def normalize_sequences(stops: Sequence[RouteStop]) -> list[RouteStop]:
    """Renumber stops 0..n-1 keeping their current relative order (ties by position)."""
    ordered = sorted(enumerate(stops), key=lambda item: (item[1].sequence, item[0]))
    return [dataclasses.replace(stop, sequence=index) for index, (_, stop) in enumerate(ordered)]


class StopSequencer:
    """Walks an ordered stop list against a distance matrix.

    Every public method is a pure function of (stops, start time, matrix):
    inputs are never mutated and results are fresh RouteStop copies.
    """

    def __init__(self, maps: MapOracleClient, config: Settings | None = None) -> None:
        self.maps = maps
        self.config = config or default_settings

    @property
    def service_time(self) -> timedelta:
        return timedelta(minutes=self.config.stop_service_minutes)

    @property
    def fallback_travel_time(self) -> timedelta:
        return timedelta(minutes=self.config.fallback_travel_minutes)

    def matrix_for(self, stops: Sequence[RouteStop]) -> Optional[DistanceMatrix]:
        """Square matrix over stops already in visiting order; None for fewer than two stops."""
        if len(stops) < 2:
            return None
        return self.maps.build_matrix([stop.address.coordinates for stop in stops])

    def calculate_estimated_travel_times(
        self,
        stops: Sequence[RouteStop],
        start_time: Optional[datetime] = None,
        matrix: Optional[DistanceMatrix] = None,
    ) -> list[RouteStop]:
        ordered = sorted_by_sequence(stops)
        if not ordered:
            return []
        start_time = start_time or utc_now()
        if matrix is None:
            matrix = self.matrix_for(ordered)

        updated: list[RouteStop] = []
        arrival = start_time
        for index, stop in enumerate(ordered):
            if index > 0:
                travel_seconds = matrix.durations[index - 1][index]
                if travel_seconds < 0:
                    logger.debug(
                        f"No travel time between stops {index - 1} and {index}; "
                        f"using {self.config.fallback_travel_minutes:g} min fallback"
                    )
                    travel = self.fallback_travel_time
                else:
                    travel = timedelta(seconds=travel_seconds)
                arrival = arrival + self.service_time + travel
            updated.append(dataclasses.replace(stop, estimated_arrival=arrival))
        return updated

    def calculate_route_metrics(
        self,
        stops: Sequence[RouteStop],
        matrix: Optional[DistanceMatrix] = None,
    ) -> RouteMetrics:
        """Sum consecutive legs plus per-stop dwell time.

        Legs the matrix marks unreachable contribute nothing, so totals are a
        lower bound whenever such a leg is present.
        """
        ordered = sorted_by_sequence(stops)
        dwell_seconds = len(ordered) * self.service_time.total_seconds()
        if len(ordered) < 2:
            return RouteMetrics(total_distance=0.0, estimated_duration=dwell_seconds)
        if matrix is None:
            matrix = self.matrix_for(ordered)

        total_distance = 0.0
        total_duration = 0.0
        skipped = 0
        for index in range(len(ordered) - 1):
            if not matrix.is_reachable(index, index + 1):
                skipped += 1
                continue
            total_distance += matrix.distances[index][index + 1]
            total_duration += matrix.durations[index][index + 1]
        if skipped:
            logger.warning(f"Route metrics skipped {skipped} unreachable legs; totals are understated")
        return RouteMetrics(total_distance=total_distance, estimated_duration=total_duration + dwell_seconds)

    def sequence_stops(
        self,
        stops: Sequence[RouteStop],
        start_time: Optional[datetime] = None,
    ) -> tuple[list[RouteStop], RouteMetrics]:
        """Arrival times and metrics for stops, both computed from one matrix fetch."""
        ordered = sorted_by_sequence(stops)
        matrix = self.matrix_for(ordered)
        timed = self.calculate_estimated_travel_times(ordered, start_time, matrix)
        return timed, self.calculate_route_metrics(ordered, matrix)

    def reorder_route_stops(
        self,
        route: Route,
        stop_order: Sequence[str],
        start_time: Optional[datetime] = None,
    ) -> Route:
        """Return a copy of route with stops in the explicit order.

        Stops not named in stop_order keep their relative order after the named
        ones. Without an explicit start_time the route's current first arrival
        is reused, falling back to now.
        """
        known = {stop.order_id for stop in route.stops}
        unknown = [order_id for order_id in stop_order if order_id not in known]
        if unknown:
            raise InvalidStopOrderError(unknown)
        if len(set(stop_order)) != len(stop_order):
            raise ValueError("Stop order lists an orderId more than once.")

        current = sorted_by_sequence(route.stops)
        by_order_id = {stop.order_id: stop for stop in current}
        named = set(stop_order)
        reordered = [by_order_id[order_id] for order_id in stop_order]
        reordered.extend(stop for stop in current if stop.order_id not in named)
        resequenced = [dataclasses.replace(stop, sequence=index) for index, stop in enumerate(reordered)]

        if start_time is None and current:
            start_time = current[0].estimated_arrival
        timed, metrics = self.sequence_stops(resequenced, start_time)
        return dataclasses.replace(
            route,
            stops=timed,
            total_distance=metrics.total_distance,
            estimated_duration=metrics.estimated_duration,
            updated_at=utc_now(),
        )

    def sequence_by_time_window(self, stops: Sequence[RouteStop], orders: Sequence[Order]) -> list[RouteStop]:
        """Resequence stops by time-window start; stops without a window keep their order at the end."""
        windows = {order.id: order.time_window for order in orders if order.time_window}
        ordered = sorted_by_sequence(stops)
        if not windows:
            return ordered
        with_window = sorted(
            (stop for stop in ordered if stop.order_id in windows),
            key=lambda stop: windows[stop.order_id].start_time,
        )
        without_window = [stop for stop in ordered if stop.order_id not in windows]
        return [
            dataclasses.replace(stop, sequence=index)
            for index, stop in enumerate([*with_window, *without_window])
        ]
