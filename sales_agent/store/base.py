from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Protocol

UTC = timezone.utc


@dataclass(frozen=True)
class LocationRecord:
    location_id: str
    name: str


@dataclass(frozen=True)
class OrderRecord:
    id: str
    location_id: str
    occurred_at: datetime
    total_cents: int


@dataclass(frozen=True)
class LineItemRecord:
    order_id: str
    location_id: str
    occurred_at: datetime
    name: str
    quantity: int
    total_cents: int
    category: str = ""


class SalesStore(Protocol):
    """Read-only access to completed sales; amounts stay in integer cents."""

    def list_locations(self) -> List[LocationRecord]:
        ...

    def fetch_orders(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[OrderRecord]:
        ...

    def fetch_line_items(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[LineItemRecord]:
        ...


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=UTC)
            except ValueError:
                continue
        return None
    # Stored timestamps without an offset are UTC.
    return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)


def safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default
