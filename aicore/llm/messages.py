import base64
import json
from typing import Any, NamedTuple

from pydantic import HttpUrl

from aicore.errors import UnsupportedFunctionalityError
from aicore.spec import *

type WireMessage = dict[str, Any]


class JsonParse(NamedTuple):
    """Outcome of a JSON parse attempt: `ok` is False when `value` is the raw, unparsed text."""

    ok: bool
    value: Any


def try_parse_json(text: str) -> JsonParse:
    try:
        return JsonParse(True, json.loads(text))
    except json.JSONDecodeError:
        return JsonParse(False, text)


def normalize_tool_input(value: Any) -> str:
    """
    Tool call arguments always go over the wire as a JSON string.

    A string that already holds JSON is passed through untouched, so it is not
    encoded twice. Any other string is treated as a scalar argument.
    """
    if isinstance(value, str):
        return value if try_parse_json(value).ok else json.dumps(value)
    return json.dumps(value)


def _image_url(p: MessagePartFile) -> str:
    if isinstance(p.data, HttpUrl):
        return str(p.data)
    if isinstance(p.data, bytes):
        base64_data = base64.b64encode(p.data).decode(encoding="utf-8")
        return f"data:{p.media_type};base64,{base64_data}"
    if p.data.startswith("data:"):
        return p.data
    if p.data.startswith("http://") or p.data.startswith("https://"):
        return p.data
    # base64 encoded string
    return f"data:{p.media_type};base64,{p.data}"


def _convert_user_part(p: UserMessagePart) -> dict[str, Any]:
    match p.type:
        case "text":
            return {"type": "text", "text": p.text}
        case "file":
            if not p.media_type.startswith("image/"):
                raise UnsupportedFunctionalityError(
                    f"file part with media type {p.media_type}",
                    "Only image files are supported.",
                )
            return {"type": "image_url", "image_url": {"url": _image_url(p)}}
        case _:
            raise UnsupportedFunctionalityError(f"Content type {p.type}")


def _convert_user_message(m: UserMessage) -> WireMessage:
    parts = [_convert_user_part(p) for p in m.content]
    if len(parts) == 1 and parts[0]["type"] == "text":
        return {"role": "user", "content": parts[0]["text"]}
    return {"role": "user", "content": parts}


def _convert_assistant_message(
    m: AssistantMessage, include_reasoning: bool
) -> WireMessage:
    text = ""
    tool_calls: list[dict[str, Any]] = []
    for p in m.content:
        match p.type:
            case "text":
                text += p.text
            case "reasoning":
                if include_reasoning and p.text:
                    text += f"<think>{p.text}</think>"
            case "tool-call":
                tool_calls.append(
                    {
                        "id": p.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": p.tool_name,
                            "arguments": normalize_tool_input(p.input),
                        },
                    }
                )
            case _:
                raise UnsupportedFunctionalityError(
                    f"Assistant content type {p.type}"
                )
    msg: WireMessage = {"role": "assistant", "content": text}
    if tool_calls:
        msg["tool_calls"] = tool_calls
    return msg


def _convert_tool_messages(m: ToolMessage) -> list[WireMessage]:
    # One wire message per result, never merged
    return [
        {
            "role": "tool",
            "tool_call_id": p.tool_call_id,
            "content": p.output.model_dump_json(exclude_none=True),
        }
        for p in m.content
    ]


def convert_to_sap_messages(
    prompt: Prompt, *, include_reasoning: bool = False
) -> list[WireMessage]:
    """
    Translate a prompt into orchestration chat messages.

    Reasoning parts of assistant messages are dropped unless `include_reasoning`
    is set, in which case they are inlined as `<think>...</think>`.
    Raises `UnsupportedFunctionalityError` for non-image files and for any
    content part with no wire counterpart.
    """
    messages: list[WireMessage] = []
    for m in prompt:
        match m.role:
            case "system":
                messages.append({"role": "system", "content": m.content})
            case "user":
                messages.append(_convert_user_message(m))
            case "assistant":
                messages.append(_convert_assistant_message(m, include_reasoning))
            case "tool":
                messages.extend(_convert_tool_messages(m))
            case _:
                raise UnsupportedFunctionalityError(f"message role {m.role}")
    return messages


__all__ = [
    "WireMessage",
    "JsonParse",
    "try_parse_json",
    "normalize_tool_input",
    "convert_to_sap_messages",
]
