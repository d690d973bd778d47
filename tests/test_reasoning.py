from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from sales_agent.errors import ExtractionFailure
from sales_agent.reasoning import BedrockReasoningClient, TokenUsage, normalize_converse_response


def _payload(content, stop_reason: str = "end_turn", usage=(120, 30)):
    return {
        "output": {"message": {"role": "assistant", "content": content}},
        "stopReason": stop_reason,
        "usage": {"inputTokens": usage[0], "outputTokens": usage[1]},
    }


class NormalizeConverseResponseTests(unittest.TestCase):
    def test_tool_use_blocks(self) -> None:
        response = normalize_converse_response(
            _payload(
                [
                    {"text": "Checking yesterday."},
                    {"toolUse": {"toolUseId": "tooluse_a", "name": "get_time_based_metrics", "input": {"timeframe": "yesterday"}}},
                ],
                stop_reason="tool_use",
            )
        )
        self.assertEqual(response.kind, "operations")
        self.assertEqual(len(response.calls), 1)
        call = response.calls[0]
        self.assertEqual((call.name, call.correlation_id, call.embedded), ("get_time_based_metrics", "tooluse_a", False))
        self.assertEqual(call.arguments, {"timeframe": "yesterday"})
        self.assertEqual(response.text, "Checking yesterday.")
        self.assertEqual(response.usage.total_tokens, 150)

    def test_plain_text(self) -> None:
        response = normalize_converse_response(_payload([{"text": "Hello! Ask me about sales."}]))
        self.assertEqual(response.kind, "text")
        self.assertEqual(response.calls, ())

    def test_call_embedded_in_text(self) -> None:
        text = 'I will run {"name": "get_top_products", "arguments": {"ranking_metric": "revenue", "timeframe": "last_month"}}'
        response = normalize_converse_response(_payload([{"text": text}]))
        self.assertEqual(response.kind, "operations")
        call = response.calls[0]
        self.assertTrue(call.embedded)
        self.assertEqual(call.correlation_id, "text_call_0")
        self.assertEqual(call.arguments["ranking_metric"], "revenue")

    def test_json_without_tool_name_stays_text(self) -> None:
        response = normalize_converse_response(_payload([{"text": 'Totals: {"revenue": 19.5}'}]))
        self.assertEqual(response.kind, "text")

    def test_guardrail_refusal(self) -> None:
        response = normalize_converse_response(_payload([{"text": "Sorry."}], stop_reason="guardrail_intervened"))
        self.assertEqual(response.kind, "refusal")
        self.assertEqual(response.reason, "guardrail_intervened")

    def test_max_tokens_incomplete_even_with_calls(self) -> None:
        response = normalize_converse_response(
            _payload([{"toolUse": {"toolUseId": "t1", "name": "query_sales", "input": {}}}], stop_reason="max_tokens")
        )
        self.assertEqual(response.kind, "incomplete")

    def test_empty_output_failed(self) -> None:
        response = normalize_converse_response({"output": {}, "stopReason": "", "usage": {}})
        self.assertEqual(response.kind, "failed")
        self.assertEqual(response.reason, "empty_response")
        self.assertEqual(response.usage.total_tokens, 0)


class TokenUsageTests(unittest.TestCase):
    def test_accumulates(self) -> None:
        usage = TokenUsage(100, 20)
        usage.add(TokenUsage(50, 10))
        self.assertEqual(usage.to_dict()["total_tokens"], 180)
        self.assertEqual(usage.cost_usd, round(180 * 0.00003, 6))


class BedrockReasoningClientTests(unittest.TestCase):
    def test_request_shape(self) -> None:
        runtime = MagicMock()
        runtime.converse.return_value = _payload([{"text": "Hi"}])
        client = BedrockReasoningClient(client=runtime, model_id="model-x", max_tokens=256, temperature=0.0)
        tool_config = {"tools": [], "toolChoice": {"auto": {}}}
        response = client.converse(
            system="be brief",
            messages=[{"role": "user", "content": [{"text": "hi"}]}],
            tool_config=tool_config,
        )
        self.assertEqual(response.kind, "text")
        kwargs = runtime.converse.call_args.kwargs
        self.assertEqual(kwargs["modelId"], "model-x")
        self.assertEqual(kwargs["system"], [{"text": "be brief"}])
        self.assertEqual(kwargs["inferenceConfig"], {"maxTokens": 256, "temperature": 0.0})
        self.assertIs(kwargs["toolConfig"], tool_config)

    def test_tool_config_omitted_when_absent(self) -> None:
        runtime = MagicMock()
        runtime.converse.return_value = _payload([{"text": "Hi"}])
        BedrockReasoningClient(client=runtime, model_id="model-x").converse(system="s", messages=[])
        self.assertNotIn("toolConfig", runtime.converse.call_args.kwargs)

    def test_missing_model_id(self) -> None:
        runtime = MagicMock()
        client = BedrockReasoningClient(client=runtime, model_id="model-x")
        client.model_id = ""
        self.assertFalse(client.configured)
        with self.assertRaises(ExtractionFailure):
            client.converse(system="s", messages=[])
        runtime.converse.assert_not_called()


if __name__ == "__main__":
    unittest.main()
