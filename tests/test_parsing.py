from __future__ import annotations

import unittest

from sales_agent.parsing import JsonMatch, NoMatch, parse_json_object


class ParseJsonObjectTests(unittest.TestCase):
    def test_whole_object(self) -> None:
        result = parse_json_object('{"name": "query_sales", "arguments": {}}')
        self.assertIsInstance(result, JsonMatch)
        self.assertEqual(result.form, "whole")
        self.assertEqual(result.value["name"], "query_sales")

    def test_fenced_block_with_trailing_comma(self) -> None:
        result = parse_json_object('Here you go:\n```json\n{"metrics": ["revenue"],}\n```')
        self.assertTrue(result.matched)
        self.assertEqual(result.form, "fenced")
        self.assertEqual(result.value, {"metrics": ["revenue"]})

    def test_object_embedded_in_prose(self) -> None:
        result = parse_json_object('I will call {"name": "get_top_products", "arguments": {"note": "a } brace"}} now.')
        self.assertTrue(result.matched)
        self.assertEqual(result.form, "embedded")
        self.assertEqual(result.value["arguments"]["note"], "a } brace")

    def test_smart_quotes_are_normalized(self) -> None:
        result = parse_json_object("{“name”: “query_sales”}")
        self.assertTrue(result.matched)
        self.assertEqual(result.value, {"name": "query_sales"})

    def test_no_match_results_never_raise(self) -> None:
        self.assertEqual(parse_json_object(None), NoMatch("empty"))
        self.assertEqual(parse_json_object("just words"), NoMatch("no_object"))
        self.assertEqual(parse_json_object("{not json}"), NoMatch("invalid_json"))
        self.assertFalse(parse_json_object("[1, 2]").matched)


if __name__ == "__main__":
    unittest.main()
