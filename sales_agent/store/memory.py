from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List

from ..catalog import LOCATIONS
from .base import LineItemRecord, LocationRecord, OrderRecord, parse_datetime


def _in_window(instant: datetime, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and instant < start:
        return False
    if end is not None and instant >= end:
        return False
    return True


@dataclass
class InMemorySalesStore:
    orders: List[OrderRecord] = field(default_factory=list)
    line_items: List[LineItemRecord] = field(default_factory=list)
    locations: List[LocationRecord] = field(
        default_factory=lambda: [LocationRecord(entity.id, entity.store_name) for entity in LOCATIONS]
    )

    def add_order(
        self,
        *,
        location_id: str,
        occurred_at: datetime | str,
        total_cents: int,
        items: Iterable[tuple] = (),
    ) -> OrderRecord:
        """Record one completed order; ``items`` are ``(name, quantity, total_cents[, category])``."""
        instant = parse_datetime(occurred_at)
        if instant is None:
            raise ValueError(f"invalid order timestamp: {occurred_at!r}")
        order = OrderRecord(
            id=f"ord_{len(self.orders) + 1}",
            location_id=location_id,
            occurred_at=instant,
            total_cents=int(total_cents),
        )
        self.orders.append(order)
        for entry in items:
            name, quantity, item_cents = entry[0], entry[1], entry[2]
            category = entry[3] if len(entry) > 3 else ""
            self.line_items.append(
                LineItemRecord(
                    order_id=order.id,
                    location_id=location_id,
                    occurred_at=instant,
                    name=str(name),
                    quantity=int(quantity),
                    total_cents=int(item_cents),
                    category=str(category or ""),
                )
            )
        return order

    def list_locations(self) -> List[LocationRecord]:
        return list(self.locations)

    def fetch_orders(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[OrderRecord]:
        wanted = set(location_ids)
        return [
            order
            for order in self.orders
            if _in_window(order.occurred_at, start, end) and (not wanted or order.location_id in wanted)
        ]

    def fetch_line_items(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[LineItemRecord]:
        wanted = set(location_ids)
        return [
            item
            for item in self.line_items
            if _in_window(item.occurred_at, start, end) and (not wanted or item.location_id in wanted)
        ]
