"""Delivery time-window conflict detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

from ...models.domain import Order, Route

logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    EARLY = "early"
    LATE = "late"


@dataclass(slots=True)
class TimeWindowConflict:
    kind: ConflictKind
    position: int
    order_id: str
    estimated_arrival: datetime
    window_start: datetime
    window_end: datetime

    @property
    def minutes_off(self) -> float:
        if self.kind is ConflictKind.EARLY:
            return (self.window_start - self.estimated_arrival).total_seconds() / 60.0
        return (self.estimated_arrival - self.window_end).total_seconds() / 60.0

    def describe(self) -> str:
        arrival = self.estimated_arrival.strftime("%H:%M:%S")
        prefix = f"Stop {self.position + 1} (Order {self.order_id}): Estimated arrival at {arrival}"
        if self.kind is ConflictKind.EARLY:
            return f"{prefix} is before the time window starts at {self.window_start.strftime('%H:%M:%S')}"
        return f"{prefix} is after the time window ends at {self.window_end.strftime('%H:%M:%S')}"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class TimeWindowValidator:
    """Compares estimated arrivals with the delivery windows of their orders.

    Early and late arrivals are reported separately: early means the driver
    waits, late means re-sequencing or notifying the customer.
    """

    def find_conflicts(self, route: Route, orders: Sequence[Order]) -> list[TimeWindowConflict]:
        windows = {order.id: order.time_window for order in orders if order.time_window is not None}
        conflicts: list[TimeWindowConflict] = []
        for position, stop in enumerate(sorted(route.stops, key=lambda item: item.sequence)):
            window = windows.get(stop.order_id)
            if window is None:
                continue
            if stop.estimated_arrival is None:
                logger.debug(f"Stop for order {stop.order_id} has no estimated arrival; skipping window check")
                continue
            arrival = _as_utc(stop.estimated_arrival)
            start = _as_utc(window.start_time)
            end = _as_utc(window.end_time)
            if arrival < start:
                kind = ConflictKind.EARLY
            elif arrival > end:
                kind = ConflictKind.LATE
            else:
                continue
            conflicts.append(
                TimeWindowConflict(
                    kind=kind,
                    position=position,
                    order_id=stop.order_id,
                    estimated_arrival=arrival,
                    window_start=start,
                    window_end=end,
                )
            )
        return conflicts

    def detect_conflicts(self, route: Route, orders: Sequence[Order]) -> list[str]:
        return [conflict.describe() for conflict in self.find_conflicts(route, orders)]
