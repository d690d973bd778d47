from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import requests

from sales_agent.errors import DataStoreError
from sales_agent.store.supabase import SupabaseRestClient, SupabaseSalesStore

from .fixtures import BLOOR


def _response(payload, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = "boom" if status_code >= 400 else "[]"
    response.json.return_value = payload
    return response


def _client(session: MagicMock, **kwargs) -> SupabaseRestClient:
    return SupabaseRestClient(
        supabase_url="https://example.supabase.co/",
        service_key="service-key",
        session=session,
        **kwargs,
    )


class SupabaseRestClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock(spec=requests.Session)
        self.session.headers = {}

    def test_unconfigured_client_raises(self) -> None:
        with patch("sales_agent.store.supabase.SUPABASE_URL", ""), patch("sales_agent.store.supabase.SUPABASE_SERVICE_ROLE_KEY", ""):
            client = SupabaseRestClient(session=self.session)
        self.assertFalse(client.configured)
        with self.assertRaises(DataStoreError):
            client.fetch_rows("orders")
        self.session.get.assert_not_called()

    def test_pages_until_short_page(self) -> None:
        self.session.get.side_effect = [
            _response([{"id": 1}, {"id": 2}]),
            _response([{"id": 3}]),
        ]
        rows = _client(self.session, page_size=2).fetch_rows("orders", filters={"state": "eq.COMPLETED"}, order="date.asc")
        self.assertEqual([row["id"] for row in rows], [1, 2, 3])
        self.assertEqual(self.session.get.call_count, 2)
        first, second = self.session.get.call_args_list
        self.assertEqual(first.args[0], "https://example.supabase.co/rest/v1/orders")
        self.assertEqual(first.kwargs["params"]["offset"], 0)
        self.assertEqual(second.kwargs["params"]["offset"], 2)
        self.assertEqual(first.kwargs["params"]["state"], "eq.COMPLETED")
        self.assertEqual(first.kwargs["params"]["order"], "date.asc")
        self.assertEqual(self.session.headers["Authorization"], "Bearer service-key")

    def test_iter_pages_yields_each_page(self) -> None:
        self.session.get.side_effect = [_response([{"id": 1}, {"id": 2}]), _response([])]
        pages = list(_client(self.session, page_size=2).iter_pages("locations"))
        self.assertEqual(pages, [[{"id": 1}, {"id": 2}], []])

    def test_row_cap_stops_reading(self) -> None:
        self.session.get.side_effect = [_response([{"id": 1}, {"id": 2}]), _response([{"id": 3}, {"id": 4}])]
        with self.assertRaises(DataStoreError) as ctx:
            _client(self.session, page_size=2, max_rows=3).fetch_rows("orders")
        self.assertIn("exceeds 3 rows", str(ctx.exception))
        self.assertEqual(self.session.get.call_count, 2)

    def test_http_error_becomes_data_store_error(self) -> None:
        self.session.get.return_value = _response({"message": "denied"}, status_code=401)
        with self.assertRaises(DataStoreError) as ctx:
            _client(self.session).fetch_rows("orders")
        self.assertIn("401", str(ctx.exception))

    def test_network_error_becomes_data_store_error(self) -> None:
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(DataStoreError):
            _client(self.session).fetch_rows("orders")

    def test_non_list_payload_rejected(self) -> None:
        self.session.get.return_value = _response({"rows": []})
        with self.assertRaises(DataStoreError) as ctx:
            _client(self.session).fetch_rows("orders")
        self.assertIn("dict", str(ctx.exception))


class SupabaseSalesStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = MagicMock(spec=SupabaseRestClient)
        self.store = SupabaseSalesStore(self.client)

    def test_orders_filtered_by_state_window_and_location(self) -> None:
        self.client.fetch_rows.return_value = [
            {"id": "o1", "locationId": BLOOR, "date": "2025-09-09T20:00:00Z", "totalAmount": 450},
            {"id": "o2", "locationId": BLOOR, "date": None, "totalAmount": 100},
        ]
        start = datetime(2025, 9, 9, 4, tzinfo=timezone.utc)
        end = datetime(2025, 9, 10, 4, tzinfo=timezone.utc)
        orders = self.store.fetch_orders(start=start, end=end, location_ids=[BLOOR])
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0].total_cents, 450)
        self.assertEqual(orders[0].occurred_at, datetime(2025, 9, 9, 20, tzinfo=timezone.utc))
        table = self.client.fetch_rows.call_args.args[0]
        filters = self.client.fetch_rows.call_args.kwargs["filters"]
        self.assertEqual(table, "orders")
        self.assertEqual(filters["state"], "eq.COMPLETED")
        self.assertEqual(filters["and"], f"(date.gte.{start.isoformat()},date.lt.{end.isoformat()})")
        self.assertEqual(filters["locationId"], f"in.({BLOOR})")

    def test_all_time_orders_have_no_window_filter(self) -> None:
        self.client.fetch_rows.return_value = []
        self.store.fetch_orders()
        filters = self.client.fetch_rows.call_args.kwargs["filters"]
        self.assertEqual(set(filters), {"state"})

    def test_line_items_read_joined_order(self) -> None:
        self.client.fetch_rows.return_value = [
            {
                "orderId": "o1",
                "name": "Chai Tea",
                "quantity": "1",
                "totalPriceAmount": 450,
                "category": "Tea",
                "orders": {"date": "2025-09-09T20:00:00+00:00", "locationId": BLOOR},
            }
        ]
        items = self.store.fetch_line_items()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].location_id, BLOOR)
        self.assertEqual(items[0].quantity, 1)
        self.assertEqual(items[0].category, "Tea")
        self.assertEqual(self.client.fetch_rows.call_args.kwargs["filters"], {"orders.state": "eq.COMPLETED"})

    def test_locations_skip_rows_without_id(self) -> None:
        self.client.fetch_rows.return_value = [
            {"squareLocationId": BLOOR, "name": "De Mello Coffee - Bloor"},
            {"squareLocationId": None, "name": "Draft"},
        ]
        locations = self.store.list_locations()
        self.assertEqual([record.location_id for record in locations], [BLOOR])


if __name__ == "__main__":
    unittest.main()
