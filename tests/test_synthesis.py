from __future__ import annotations

import unittest
from unittest.mock import patch

from sales_agent.errors import DeadlineExceeded
from sales_agent.operations import execute_invocation, parse_invocation, tool_config
from sales_agent.reasoning import ReasoningResponse, TokenUsage
from sales_agent.response import (
    fallback_summary,
    fmt_metric,
    fmt_money,
    merge_results,
    synthesize_answer,
    tool_result_message,
)

from .fixtures import NOW, ScriptedReasoning, sample_store, text_response, tool_response

QUESTION = [{"role": "user", "content": [{"text": "What was revenue yesterday?"}]}]


def _run(name, arguments, correlation_id):
    return execute_invocation(parse_invocation(name, arguments, correlation_id), store=sample_store(), now=NOW)


class FormattingTests(unittest.TestCase):
    def test_money(self) -> None:
        self.assertEqual(fmt_money(1234.5), "$1,234.50")
        self.assertEqual(fmt_money(-3), "-$3.00")
        self.assertEqual(fmt_money(None), "$0.00")

    def test_metrics(self) -> None:
        self.assertEqual(fmt_metric("revenue", 19.5), "$19.50")
        self.assertEqual(fmt_metric("growth_rate", 12.34), "12.3%")
        self.assertEqual(fmt_metric("quantity", 1234.0), "1,234")
        self.assertEqual(fmt_metric("items_per_sale", 1.5), "1.50")
        self.assertEqual(fmt_metric("segment", "weekday"), "weekday")


class MergeResultsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.yesterday = _run("get_time_based_metrics", {"timeframe": "yesterday", "metrics": ["revenue", "count"]}, "tooluse_0")
        self.unsupported = _run("get_advanced_analytics", {"analysis_type": "location_correlation", "timeframe": "last_month"}, "tooluse_1")
        self.rankings = _run("get_location_rankings", {"ranking_type": "by_revenue", "timeframe": "last_month"}, "tooluse_2")

    def test_rows_tagged_with_source(self) -> None:
        merged = merge_results([self.yesterday, self.unsupported, self.rankings])
        self.assertEqual(len(merged["results"]), 2)
        self.assertEqual(len(merged["rows"]), 7)
        first = merged["rows"][0]
        self.assertEqual(first["source_operation"], "get_time_based_metrics")
        self.assertEqual(first["correlation_id"], "tooluse_0")
        self.assertEqual(first["timeframe"], "yesterday")
        self.assertEqual(merged["rows"][-1]["timeframe"], "last_month")
        self.assertEqual(merged["failures"][0]["error_type"], "UnsupportedVariant")
        self.assertFalse(merged["truncated"])

    def test_row_cap(self) -> None:
        with patch("sales_agent.response.merge.MAX_GROUPED_RESULTS", 3):
            merged = merge_results([self.yesterday, self.rankings])
        self.assertEqual(len(merged["rows"]), 3)
        self.assertTrue(merged["truncated"])

    def test_fallback_summary_lists_successes(self) -> None:
        text = fallback_summary([self.yesterday, self.unsupported])
        lines = text.splitlines()
        self.assertEqual(lines[0], "Analysis completed with 1 successful operations.")
        self.assertEqual(lines[1], "- get_time_based_metrics (Yesterday): Yesterday: revenue $19.50, count 2")

    def test_fallback_summary_without_data(self) -> None:
        self.assertEqual(fallback_summary([self.unsupported]), "Analysis completed but no data was returned.")


class SynthesizeAnswerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.outcome = _run("get_time_based_metrics", {"timeframe": "yesterday", "metrics": ["revenue", "count"]}, "tooluse_0")
        self.proposal = tool_response(("get_time_based_metrics", {"timeframe": "yesterday", "metrics": ["revenue", "count"]}))

    def _synthesize(self, reasoning, **kwargs):
        return synthesize_answer(
            reasoning,
            system="system prompt",
            conversation=list(QUESTION),
            assistant_message=self.proposal.message,
            tool_results=[("tooluse_0", self.outcome.tool_payload())],
            outcomes=[self.outcome],
            tool_config=tool_config(),
            **kwargs,
        )

    def test_answer_from_model(self) -> None:
        reasoning = ScriptedReasoning(text_response("Revenue yesterday was $19.50 across 2 sales."))
        result = self._synthesize(reasoning)
        self.assertFalse(result.used_fallback)
        self.assertIn("$19.50", result.text)
        self.assertEqual(result.usage.total_tokens, 80)
        messages = reasoning.requests[0]["messages"]
        self.assertEqual([message["role"] for message in messages], ["user", "assistant", "user"])
        block = messages[-1]["content"][0]["toolResult"]
        self.assertEqual(block["toolUseId"], "tooluse_0")
        self.assertEqual(block["status"], "success")
        self.assertEqual(block["content"][0]["json"]["result"]["rows"][0]["metrics"]["revenue"], 19.5)

    def test_model_failure_uses_template(self) -> None:
        result = self._synthesize(ScriptedReasoning(RuntimeError("model exploded")))
        self.assertTrue(result.used_fallback)
        self.assertIn("RuntimeError", result.error)
        self.assertIn("revenue $19.50", result.text)

    def test_second_tool_request_uses_template(self) -> None:
        follow_up = tool_response(
            ("get_top_products", {"ranking_metric": "revenue", "timeframe": "last_month"}),
            text="Let me also check products.",
        )
        result = self._synthesize(ScriptedReasoning(follow_up))
        self.assertTrue(result.used_fallback)
        self.assertNotIn("Let me also check products.", result.text)
        self.assertIn("revenue $19.50", result.text)
        self.assertIn("SynthesisFailure", result.error)
        self.assertEqual(result.usage.total_tokens, 120)

    def test_refused_synthesis_keeps_usage(self) -> None:
        refusal = ReasoningResponse(kind="refusal", reason="content_filtered", usage=TokenUsage(40, 0))
        result = self._synthesize(ScriptedReasoning(refusal))
        self.assertTrue(result.used_fallback)
        self.assertEqual(result.usage.input_tokens, 40)

    def test_deadline_propagates(self) -> None:
        with self.assertRaises(DeadlineExceeded):
            self._synthesize(ScriptedReasoning(DeadlineExceeded("synthesis")))


class ToolResultMessageTests(unittest.TestCase):
    def test_error_status(self) -> None:
        message = tool_result_message([("tooluse_3", {"status": "error", "error": "unknown operation"})])
        self.assertEqual(message["content"][0]["toolResult"]["status"], "error")

    def test_embedded_results_sent_as_text(self) -> None:
        message = tool_result_message([("text_call_0", {"status": "success", "result": {}})], embedded=True)
        self.assertEqual(message["role"], "user")
        self.assertIn("text_call_0", message["content"][0]["text"])
        self.assertNotIn("toolResult", message["content"][0])


if __name__ == "__main__":
    unittest.main()
