from .merge import fallback_summary, fmt_metric, fmt_money, merge_results
from .synthesizer import SynthesisResult, synthesize_answer, tool_result_block, tool_result_message

__all__ = [
    "SynthesisResult",
    "fallback_summary",
    "fmt_metric",
    "fmt_money",
    "merge_results",
    "synthesize_answer",
    "tool_result_block",
    "tool_result_message",
]
