from __future__ import annotations

import itertools
import logging
import time
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List

import requests

from ..config import (
    COMPLETED_ORDER_STATE,
    SUPABASE_MAX_ROWS,
    SUPABASE_PAGE_SIZE,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_TIMEOUT_SECONDS,
    SUPABASE_URL,
)
from ..errors import DataStoreError
from .base import LineItemRecord, LocationRecord, OrderRecord, parse_datetime, safe_int

logger = logging.getLogger(__name__)


class SupabaseRestClient:
    """Read-only PostgREST reader.

    Rows come back in pages of ``page_size`` via ``limit``/``offset``. A read
    stops at the first short page. It fails once more than ``max_rows`` rows
    have arrived, so an unbounded window can't pull the whole table.
    """

    def __init__(
        self,
        *,
        supabase_url: str | None = None,
        service_key: str | None = None,
        timeout: int = SUPABASE_TIMEOUT_SECONDS,
        page_size: int = SUPABASE_PAGE_SIZE,
        max_rows: int = SUPABASE_MAX_ROWS,
        session: requests.Session | None = None,
    ) -> None:
        root = (supabase_url or SUPABASE_URL or "").strip().rstrip("/")
        key = (service_key or SUPABASE_SERVICE_ROLE_KEY or "").strip()
        self.rest_root = f"{root}/rest/v1" if root and key else ""
        self.timeout = timeout
        self.page_size = max(1, page_size)
        self.max_rows = max_rows
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"apikey": key, "Authorization": f"Bearer {key}", "Accept": "application/json"})

    @property
    def configured(self) -> bool:
        return bool(self.rest_root)

    def _get_page(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        started = time.perf_counter()
        try:
            response = self.session.get(f"{self.rest_root}/{table}", params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise DataStoreError(f"{table}: Supabase unreachable: {exc}") from exc
        if not response.ok:
            raise DataStoreError(f"{table}: Supabase returned {response.status_code}: {response.text[:300]}")
        try:
            page = response.json()
        except ValueError as exc:
            raise DataStoreError(f"{table}: response body is not JSON") from exc
        if not isinstance(page, list):
            raise DataStoreError(f"{table}: expected a JSON array, got {type(page).__name__}")
        logger.debug(
            "supabase_page table=%s offset=%s rows=%s latency_ms=%s",
            table,
            params.get("offset"),
            len(page),
            int((time.perf_counter() - started) * 1000),
        )
        return page

    def iter_pages(
        self,
        table: str,
        *,
        select: str = "*",
        filters: Dict[str, str] | None = None,
        order: str | None = None,
    ) -> Iterator[List[Dict[str, Any]]]:
        if not self.configured:
            raise DataStoreError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.")
        base: Dict[str, Any] = {"select": select, **(filters or {})}
        if order:
            base["order"] = order
        for offset in itertools.count(0, self.page_size):
            page = self._get_page(table, {**base, "limit": self.page_size, "offset": offset})
            if offset + len(page) > self.max_rows:
                raise DataStoreError(f"{table}: read exceeds {self.max_rows} rows; narrow the time window")
            yield page
            if len(page) < self.page_size:
                return

    def fetch_rows(self, table: str, **query: Any) -> List[Dict[str, Any]]:
        return list(itertools.chain.from_iterable(self.iter_pages(table, **query)))


def _window_filter(column: str, start: datetime | None, end: datetime | None) -> str | None:
    parts = []
    if start is not None:
        parts.append(f"{column}.gte.{start.isoformat()}")
    if end is not None:
        parts.append(f"{column}.lt.{end.isoformat()}")
    if not parts:
        return None
    return f"({','.join(parts)})"


def _in_filter(values: Iterable[str]) -> str | None:
    cleaned = [value for value in values if value]
    if not cleaned:
        return None
    return f"in.({','.join(cleaned)})"


class SupabaseSalesStore:
    """Reads the ``orders``, ``line_items`` and ``locations`` tables through PostgREST."""

    def __init__(self, client: SupabaseRestClient | None = None, *, completed_state: str = COMPLETED_ORDER_STATE) -> None:
        self.client = client or SupabaseRestClient()
        self.completed_state = completed_state

    def list_locations(self) -> List[LocationRecord]:
        rows = self.client.fetch_rows("locations", select="squareLocationId,name", order="name.asc")
        return [
            LocationRecord(location_id=str(row.get("squareLocationId") or ""), name=str(row.get("name") or ""))
            for row in rows
            if row.get("squareLocationId")
        ]

    def fetch_orders(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[OrderRecord]:
        filters: Dict[str, str] = {"state": f"eq.{self.completed_state}"}
        window = _window_filter("date", start, end)
        if window:
            filters["and"] = window
        locations = _in_filter(location_ids)
        if locations:
            filters["locationId"] = locations
        rows = self.client.fetch_rows(
            "orders",
            select="id,locationId,date,totalAmount",
            filters=filters,
            order="date.asc",
        )
        records: List[OrderRecord] = []
        for row in rows:
            occurred = parse_datetime(row.get("date"))
            if occurred is None:
                continue
            records.append(
                OrderRecord(
                    id=str(row.get("id") or ""),
                    location_id=str(row.get("locationId") or ""),
                    occurred_at=occurred,
                    total_cents=safe_int(row.get("totalAmount")),
                )
            )
        return records

    def fetch_line_items(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        location_ids: Iterable[str] = (),
    ) -> List[LineItemRecord]:
        filters: Dict[str, str] = {"orders.state": f"eq.{self.completed_state}"}
        window = _window_filter("date", start, end)
        if window:
            filters["orders.and"] = window
        locations = _in_filter(location_ids)
        if locations:
            filters["orders.locationId"] = locations
        rows = self.client.fetch_rows(
            "line_items",
            select="orderId,name,quantity,totalPriceAmount,category,orders!inner(date,locationId)",
            filters=filters,
        )
        records: List[LineItemRecord] = []
        for row in rows:
            order = row.get("orders") if isinstance(row.get("orders"), dict) else {}
            occurred = parse_datetime(order.get("date"))
            if occurred is None:
                continue
            records.append(
                LineItemRecord(
                    order_id=str(row.get("orderId") or ""),
                    location_id=str(order.get("locationId") or ""),
                    occurred_at=occurred,
                    name=str(row.get("name") or ""),
                    quantity=safe_int(row.get("quantity")),
                    total_cents=safe_int(row.get("totalPriceAmount")),
                    category=str(row.get("category") or ""),
                )
            )
        return records
