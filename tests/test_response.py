import dotenv
import pytest

from aicore.client import CompletionResult, TokenUsage, WireToolCall
from aicore.llm.response import extract_text, map_finish_reason, parse_completion, to_usage
from aicore.spec import *

dotenv.load_dotenv()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("stop", "stop"),
        ("END_TURN", "stop"),
        ("eos", "stop"),
        ("max_tokens", "length"),
        ("length", "length"),
        ("tool_calls", "tool-calls"),
        ("function_call", "tool-calls"),
        ("content_filter", "content-filter"),
        ("error", "error"),
        ("something_new", "other"),
        (None, "unknown"),
        ("", "unknown"),
    ],
)
def test_map_finish_reason(raw, expected):
    assert map_finish_reason(raw) == expected


def test_to_usage():
    usage = to_usage(TokenUsage(prompt_tokens=3, completion_tokens=5, total_tokens=8))
    assert usage == Usage(input_tokens=3, output_tokens=5, total_tokens=8)
    assert to_usage(None) == Usage()


def test_extract_text_unwraps_content_envelope():
    assert extract_text('{"content": "Hello"}') == "Hello"
    assert extract_text('{"answer": 1}') == '{"answer": 1}'
    assert extract_text("plain") == "plain"
    assert extract_text(None) is None


def test_completion_from_body():
    body = {
        "request_id": "req-1",
        "final_result": {
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [
                            {
                                "id": "c1",
                                "type": "function",
                                "function": {
                                    "name": "get_weather",
                                    "arguments": '{"city":"Paris"}',
                                },
                            }
                        ],
                    },
                    "finish_reason": "tool_calls",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14},
        },
    }
    result = CompletionResult.from_body(body)
    assert result.request_id == "req-1"
    assert result.tool_calls == [
        WireToolCall(id="c1", name="get_weather", arguments='{"city":"Paris"}')
    ]

    content, tool_calls, finish_reason, usage = parse_completion(result)
    assert finish_reason == "tool-calls"
    assert usage.total_tokens == 14
    # empty text yields no text content
    assert [c.type for c in content] == ["tool-call"]
    assert tool_calls[0].tool_call_id == "c1"
    assert tool_calls[0].input == '{"city":"Paris"}'


def test_completion_from_legacy_body():
    body = {
        "orchestration_result": {
            "choices": [
                {"message": {"content": "Hi there"}, "finish_reason": "stop"}
            ]
        }
    }
    content, tool_calls, finish_reason, usage = parse_completion(
        CompletionResult.from_body(body, request_id="hdr-1")
    )
    assert content == [Text(text="Hi there")]
    assert tool_calls == []
    assert finish_reason == "stop"
    assert usage == Usage()


def test_missing_tool_call_id_is_generated():
    result = CompletionResult(
        tool_calls=[WireToolCall(id="", name="ping", arguments="{}")],
        finish_reason="tool_calls",
    )
    _, tool_calls, _, _ = parse_completion(result)
    assert tool_calls[0].tool_call_id
