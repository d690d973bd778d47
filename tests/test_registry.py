from __future__ import annotations

import unittest

from sales_agent.errors import ValidationFailure
from sales_agent.operations import OPERATION_SPECS, candidate_for, parse_invocation, tool_config, tool_specs
from sales_agent.router.contracts import ALL_TIME_LABEL

from .fixtures import NOW


class ToolCatalogTests(unittest.TestCase):
    def test_every_operation_is_advertised(self) -> None:
        specs = tool_specs()
        self.assertEqual(len(specs), 15)
        self.assertEqual([spec["toolSpec"]["name"] for spec in specs], list(OPERATION_SPECS))
        for spec in specs:
            schema = spec["toolSpec"]["inputSchema"]["json"]
            self.assertNotIn("operation", schema["properties"])
            self.assertNotIn("operation", schema.get("required", []))
            self.assertFalse(schema["additionalProperties"])
            self.assertTrue(spec["toolSpec"]["description"])

    def test_timeframe_enums_are_flat(self) -> None:
        by_name = {spec["toolSpec"]["name"]: spec["toolSpec"]["inputSchema"]["json"] for spec in tool_specs()}
        window = by_name["get_time_based_metrics"]["properties"]["timeframe"]["enum"]
        self.assertIn("yesterday", window)
        self.assertNotIn("all_time", window)
        location = by_name["get_location_metrics"]["properties"]["timeframe"]["enum"]
        self.assertIn("all_time", location)
        self.assertEqual(
            sorted(by_name["compare_locations"]["required"]),
            ["comparison_type", "metric", "timeframe"],
        )

    def test_tool_config_subset(self) -> None:
        config = tool_config(["query_sales"])
        self.assertEqual(config["toolChoice"], {"auto": {}})
        self.assertEqual([tool["toolSpec"]["name"] for tool in config["tools"]], ["query_sales"])


class ParseInvocationTests(unittest.TestCase):
    def test_unknown_name(self) -> None:
        with self.assertRaises(KeyError):
            parse_invocation("drop_tables", {})

    def test_typed_arguments(self) -> None:
        invocation = parse_invocation("get_time_based_metrics", {"timeframe": "yesterday", "metrics": ["revenue"]}, "tooluse_0")
        self.assertEqual(invocation.correlation_id, "tooluse_0")
        self.assertEqual(invocation.arguments.timeframe, "yesterday")
        self.assertEqual(
            invocation.argument_payload(),
            {"timeframe": "yesterday", "metrics": ["revenue"], "include_top_location": False},
        )

    def test_json_string_arguments(self) -> None:
        invocation = parse_invocation("get_business_overview", '{"metrics": ["total_revenue"]}')
        self.assertTrue(invocation.correlation_id.startswith("call_"))
        self.assertEqual(invocation.arguments.metrics, ["total_revenue"])

    def test_invalid_enum_value(self) -> None:
        with self.assertRaises(ValidationFailure) as ctx:
            parse_invocation("get_time_based_metrics", {"timeframe": "next_decade", "metrics": ["revenue"]})
        self.assertTrue(any(message.startswith("timeframe") for message in ctx.exception.errors))

    def test_extra_fields_rejected(self) -> None:
        with self.assertRaises(ValidationFailure):
            parse_invocation("get_time_based_metrics", {"timeframe": "today", "metrics": ["revenue"], "sql": "1=1"})

    def test_non_object_arguments(self) -> None:
        with self.assertRaises(ValidationFailure):
            parse_invocation("query_sales", ["revenue"])
        with self.assertRaises(ValidationFailure):
            parse_invocation("query_sales", "not json at all")

    def test_specific_pair_needs_two_distinct_locations(self) -> None:
        base = {"comparison_type": "specific_pair", "metric": "revenue", "timeframe": "last_month"}
        with self.assertRaises(ValidationFailure):
            parse_invocation("compare_locations", {**base, "location_a": "Bloor"})
        with self.assertRaises(ValidationFailure):
            parse_invocation("compare_locations", {**base, "location_a": "Bloor", "location_b": "Bloor"})
        parse_invocation("compare_locations", {**base, "location_a": "Bloor", "location_b": "Kingston"})

    def test_item_distribution_needs_item(self) -> None:
        with self.assertRaises(ValidationFailure):
            parse_invocation(
                "get_product_location_analysis",
                {"analysis_type": "item_distribution", "metric": "revenue", "timeframe": "last_month"},
            )


class CandidateMappingTests(unittest.TestCase):
    def test_rankings_map_to_location_grouping(self) -> None:
        invocation = parse_invocation(
            "get_location_rankings",
            {"ranking_type": "by_transactions", "order": "lowest_to_highest", "timeframe": "last_week"},
        )
        candidate = candidate_for(invocation.arguments, now=NOW)
        self.assertEqual(candidate.time_description, "last_week")
        self.assertEqual(candidate.metrics, ["count"])
        self.assertEqual(candidate.group_by, ["location"])
        self.assertEqual(candidate.order_by, {"field": "count", "direction": "asc"})

    def test_all_time_becomes_labelled_range(self) -> None:
        invocation = parse_invocation("get_business_overview", {"metrics": ["total_revenue", "avg_daily_revenue"]})
        candidate = candidate_for(invocation.arguments, now=NOW)
        self.assertIsNone(candidate.time_description)
        self.assertEqual(candidate.date_ranges[0]["label"], ALL_TIME_LABEL)
        self.assertEqual(candidate.metrics, ["revenue"])

    def test_location_metrics_translate_derived_metrics(self) -> None:
        invocation = parse_invocation(
            "get_location_metrics",
            {"locations": ["Yonge"], "metrics": ["market_share", "efficiency"], "timeframe": "this_month"},
        )
        candidate = candidate_for(invocation.arguments, now=NOW)
        self.assertEqual(candidate.location_names, ["Yonge"])
        self.assertEqual(candidate.metrics, ["revenue", "avg_transaction"])


if __name__ == "__main__":
    unittest.main()
