import json
from typing import Sequence
from uuid import uuid4

from aicore.client import CompletionResult, TokenUsage
from aicore.llm.messages import try_parse_json
from aicore.spec import *

STOP_REASONS = frozenset({"stop", "end_turn", "stop_sequence", "eos"})
LENGTH_REASONS = frozenset({"length", "max_tokens", "max_tokens_reached"})
TOOL_CALL_REASONS = frozenset({"tool_calls", "tool_call", "function_call"})


def map_finish_reason(reason: str | None) -> FinishReason:
    if not reason:
        return "unknown"
    match reason.lower():
        case r if r in STOP_REASONS:
            return "stop"
        case r if r in LENGTH_REASONS:
            return "length"
        case r if r in TOOL_CALL_REASONS:
            return "tool-calls"
        case "content_filter":
            return "content-filter"
        case "error":
            return "error"
        case _:
            return "other"


def to_usage(u: TokenUsage | None) -> Usage:
    if not u:
        return Usage()
    return Usage(
        input_tokens=u.prompt_tokens,
        output_tokens=u.completion_tokens,
        total_tokens=u.total_tokens,
    )


def _gen_id() -> str:
    return uuid4().hex


def extract_text(content: str | None) -> str | None:
    """Some deployments wrap the answer as `{"content": "..."}`; unwrap it."""
    if content is None:
        return None
    parsed = try_parse_json(content)
    if parsed.ok and isinstance(parsed.value, dict) and "content" in parsed.value:
        value = parsed.value["content"]
        return value if isinstance(value, str) else json.dumps(value)
    return content


def parse_completion(
    result: CompletionResult,
) -> tuple[Sequence[Content], list[ToolCall], FinishReason, Usage]:
    content: list[Content] = []
    tool_calls: list[ToolCall] = []

    if text := extract_text(result.content):
        content.append(Text(text=text))

    for tc in result.tool_calls:
        t = ToolCall(
            tool_call_id=tc.id or _gen_id(),
            tool_name=tc.name,
            input=tc.arguments,
        )
        content.append(t)
        tool_calls.append(t)

    return (
        content,
        tool_calls,
        map_finish_reason(result.finish_reason),
        to_usage(result.usage),
    )


__all__ = [
    "map_finish_reason",
    "to_usage",
    "extract_text",
    "parse_completion",
]
