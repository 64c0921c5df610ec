import math
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncGenerator, Callable, Sequence

from aicore import LOGGER
from aicore.client import OrchestrationStream, StreamChunk, TokenUsage
from aicore.errors import ProviderError, convert_to_provider_error
from aicore.llm.response import map_finish_reason, to_usage
from aicore.spec import *

log = LOGGER.getChild("stream")

MISSING_TOOL_NAME = "Received tool-call delta without a tool name. Emitting tool-call with an empty tool name."


@dataclass
class ToolCallAccumulator:
    id: str
    tool_name: str | None = None
    arguments: str = ""
    did_emit_input_start: bool = False
    did_emit_call: bool = False


class StreamTransformer:
    """
    Turns the chunks of one upstream stream into canonical stream parts.

    Once any tool-call delta is seen, text deltas are no longer emitted for the
    rest of the stream. Exactly one `finish` part ends a successful stream; a
    failure while iterating ends it with a single `error` part instead.

    `warnings` starts as a copy of the build-time warnings and grows with
    warnings found while streaming. The list carried by `stream-start` is a
    snapshot and never changes.
    """

    def __init__(
        self,
        stream: OrchestrationStream,
        *,
        model_id: str,
        warnings: Sequence[Warning] = (),
        classify: Callable[[Exception], ProviderError] | None = None,
    ):
        self.stream = stream
        self.model_id = model_id
        self.warnings: list[Warning] = list(warnings)
        self._stream_start_warnings = tuple(warnings)
        self._classify = classify or (
            lambda e: convert_to_provider_error(e, operation="doStream")
        )

        self.is_first_chunk = True
        self.active_text = False
        self.in_tool_mode = False
        self.text_block_id: str | None = None
        self._text_blocks = 0
        self.tool_calls_in_progress: dict[int, ToolCallAccumulator] = {}
        self.finish_reason: str | None = None
        self.usage: TokenUsage | None = None

    async def transform(self) -> AsyncGenerator[StreamPart, None]:
        yield StreamPartStreamStart(warnings=list(self._stream_start_warnings))
        try:
            async for chunk in self.stream:
                for part in self._on_chunk(chunk):
                    yield part
            for part in self._on_end():
                yield part
        except Exception as e:
            error = self._classify(e)
            log.warning(f"Stream failed: {error.message}")
            yield StreamPartError(error=error)

    def _open_text(self) -> list[StreamPart]:
        if self.active_text:
            return []
        self.text_block_id = str(self._text_blocks)
        self._text_blocks += 1
        self.active_text = True
        return [StreamPartTextStart(id=self.text_block_id)]

    def _close_text(self) -> list[StreamPart]:
        if not self.active_text or self.text_block_id is None:
            return []
        self.active_text = False
        return [StreamPartTextEnd(id=self.text_block_id)]

    def _on_chunk(self, chunk: StreamChunk) -> list[StreamPart]:
        parts: list[StreamPart] = []
        if self.is_first_chunk:
            self.is_first_chunk = False
            parts.append(
                StreamPartResponseMetadata(
                    model_id=self.model_id, timestamp=datetime.now()
                )
            )

        if chunk.delta_tool_calls:
            self.in_tool_mode = True

        # an empty string is still a delta; only None is skipped
        if chunk.delta_content is not None and not self.in_tool_mode:
            parts.extend(self._open_text())
            assert self.text_block_id is not None
            parts.append(
                StreamPartTextDelta(id=self.text_block_id, delta=chunk.delta_content)
            )

        for delta in chunk.delta_tool_calls:
            index = delta.index
            if index is None or not math.isfinite(index):
                continue
            index = int(index)
            tc = self.tool_calls_in_progress.get(index)
            if tc is None:
                tc = ToolCallAccumulator(id=delta.id or f"tool_{index}")
                self.tool_calls_in_progress[index] = tc
            if delta.id:
                tc.id = delta.id
            if delta.name:
                tc.tool_name = delta.name
            if not tc.did_emit_input_start and tc.tool_name:
                tc.did_emit_input_start = True
                parts.append(
                    StreamPartToolInputStart(id=tc.id, tool_name=tc.tool_name)
                )
            if delta.arguments:
                tc.arguments += delta.arguments
                if tc.did_emit_input_start:
                    parts.append(
                        StreamPartToolInputDelta(id=tc.id, delta=delta.arguments)
                    )

        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason
            if map_finish_reason(chunk.finish_reason) == "tool-calls":
                parts.extend(self._close_text())
                parts.extend(self._flush_tool_calls())

        if chunk.usage is not None:
            self.usage = chunk.usage
        return parts

    def _flush_tool_calls(self) -> list[StreamPart]:
        parts: list[StreamPart] = []
        for tc in self.tool_calls_in_progress.values():
            if tc.did_emit_call:
                continue
            if not tc.did_emit_input_start:
                tc.did_emit_input_start = True
                parts.append(
                    StreamPartToolInputStart(id=tc.id, tool_name=tc.tool_name or "")
                )
            if not tc.tool_name:
                log.warning(f"{MISSING_TOOL_NAME} (tool call {tc.id})")
                self.warnings.append(OtherWarning(message=MISSING_TOOL_NAME))
            tc.did_emit_call = True
            log.debug(f"Flushing tool call {tc.id}")
            parts.append(StreamPartToolInputEnd(id=tc.id))
            parts.append(
                ToolCall(
                    tool_call_id=tc.id,
                    tool_name=tc.tool_name or "",
                    input=tc.arguments,
                )
            )
        return parts

    def _on_end(self) -> list[StreamPart]:
        parts = self._flush_tool_calls()
        flushed_at_end = any(isinstance(p, ToolCall) for p in parts)
        parts.extend(self._close_text())

        raw = self.stream.finish_reason or self.finish_reason
        finish_reason = map_finish_reason(raw)
        # Tool calls completed without the upstream ever signalling them
        if flushed_at_end and finish_reason in ("stop", "unknown"):
            finish_reason = "tool-calls"

        usage = self.stream.token_usage or self.usage
        parts.append(
            StreamPartFinish(
                finish_reason=finish_reason,
                raw_finish_reason=raw,
                usage=to_usage(usage),
            )
        )
        return parts


__all__ = ["MISSING_TOOL_NAME", "ToolCallAccumulator", "StreamTransformer"]
