from datetime import datetime, timedelta, timezone

import pytest

from src.route_service.models.domain import (
    Address,
    Dimensions,
    Location,
    Order,
    Package,
    Route,
    RouteStop,
    TimeWindow,
    VehicleCapacity,
)


def _stop(oid: str, sequence: int) -> RouteStop:
    return RouteStop(
        order_id=oid,
        address=Address(
            street="1 Main St", city="Riyadh", state="RI", zip_code="11564", coordinates=Location(24.7, 46.6)
        ),
        sequence=sequence,
    )


def _route(stops) -> Route:
    return Route(id="r1", load_id="l1", vehicle_id="v1", stops=stops, total_distance=0.0, estimated_duration=0.0)


def test_route_sorts_stops_by_sequence() -> None:
    route = _route([_stop("b", 1), _stop("c", 2), _stop("a", 0)])

    assert route.order_ids == ["a", "b", "c"]


@pytest.mark.parametrize("sequences", [[0, 2], [1, 2], [0, 0]])
def test_route_rejects_sparse_or_duplicate_sequences(sequences) -> None:
    with pytest.raises(ValueError):
        _route([_stop(f"o{index}", sequence) for index, sequence in enumerate(sequences)])


def test_route_rejects_repeated_orders() -> None:
    with pytest.raises(ValueError):
        _route([_stop("a", 0), _stop("a", 1)])


def test_route_rejects_negative_metrics() -> None:
    with pytest.raises(ValueError):
        Route(id="r1", load_id="l1", vehicle_id="v1", stops=[], total_distance=-1.0, estimated_duration=0.0)


def test_location_range_is_checked() -> None:
    with pytest.raises(ValueError):
        Location(91.0, 0.0)
    with pytest.raises(ValueError):
        Location(0.0, float("nan"))


def test_time_window_requires_positive_length() -> None:
    start = datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        TimeWindow(start, start)
    assert TimeWindow(start, start + timedelta(minutes=30)).contains(start + timedelta(minutes=30))


def test_order_totals_sum_packages() -> None:
    order = Order(
        id="o1",
        delivery_address=_stop("o1", 0).address,
        packages=[
            Package(id="p1", description="box", weight=2.5, dimensions=Dimensions(1, 2, 3)),
            Package(id="p2", description="crate", weight=4.0, dimensions=Dimensions(1, 1, 1)),
        ],
    )

    assert order.total_weight == 6.5
    assert order.total_volume == 7


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        VehicleCapacity(max_weight=0)
