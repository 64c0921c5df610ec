"""
Boundary to the orchestration service.

The provider only talks to an `OrchestrationClient`; `HttpOrchestrationClient`
is the httpx-based implementation used in production.
"""

import json
from typing import Any, AsyncIterable, AsyncIterator, Mapping, Protocol

import httpx
from pydantic import BaseModel, Field

from aicore import LOGGER

log = LOGGER.getChild("client")


class OrchestrationStreamError(Exception):
    """An error event was received in the middle of a server-sent event stream."""


class TokenUsage(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class WireToolCall(BaseModel):
    id: str
    name: str
    arguments: str


class ToolCallDelta(BaseModel):
    index: int | float | None = None
    """Tool call slot. May be missing (or not even a finite number) in malformed upstream data."""
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


def _llm_result(body: Mapping[str, Any]) -> Mapping[str, Any]:
    for key in ("final_result", "orchestration_result"):
        if isinstance(body.get(key), dict):
            return body[key]
    module_results = body.get("module_results")
    if isinstance(module_results, dict) and isinstance(
        module_results.get("llm"), dict
    ):
        return module_results["llm"]
    return {}


def _first_choice(llm: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = llm.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _usage(llm: Mapping[str, Any]) -> TokenUsage | None:
    usage = llm.get("usage")
    if not isinstance(usage, dict):
        return None
    return TokenUsage.model_validate(usage)


def _text(content: Any) -> str | None:
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            p.get("text", "")
            for p in content
            if isinstance(p, dict) and p.get("type") == "text"
        )
    return str(content)


class CompletionResult(BaseModel):
    content: str | None = None
    tool_calls: list[WireToolCall] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    request_id: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @staticmethod
    def from_body(
        body: Mapping[str, Any], request_id: str | None = None
    ) -> "CompletionResult":
        llm = _llm_result(body)
        choice = _first_choice(llm)
        message = choice.get("message") or {}
        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            tool_calls.append(
                WireToolCall(
                    id=tc.get("id") or "",
                    name=function.get("name") or "",
                    arguments=function.get("arguments") or "",
                )
            )
        return CompletionResult(
            content=_text(message.get("content")),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            usage=_usage(llm),
            request_id=body.get("request_id") or request_id,
            raw=dict(body),
        )


class StreamChunk(BaseModel):
    delta_content: str | None = None
    delta_tool_calls: list[ToolCallDelta] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage | None = None

    @staticmethod
    def from_body(body: Mapping[str, Any]) -> "StreamChunk":
        llm = _llm_result(body)
        choice = _first_choice(llm)
        delta = choice.get("delta") or {}
        deltas = []
        for tc in delta.get("tool_calls") or []:
            function = tc.get("function") or {}
            deltas.append(
                ToolCallDelta(
                    index=tc.get("index"),
                    id=tc.get("id"),
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                )
            )
        return StreamChunk(
            delta_content=_text(delta.get("content")),
            delta_tool_calls=deltas,
            finish_reason=choice.get("finish_reason"),
            usage=_usage(llm),
        )


class OrchestrationStream:
    """
    Async iterable over the chunks of one streaming response.

    After the iteration is exhausted, `finish_reason` and `token_usage` hold
    the last non-null values seen across chunks.
    """

    def __init__(
        self, chunks: AsyncIterable[StreamChunk], request_id: str | None = None
    ) -> None:
        self._chunks = chunks
        self._consumed = False
        self.request_id = request_id
        self.finish_reason: str | None = None
        self.token_usage: TokenUsage | None = None

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._consumed:
            raise RuntimeError("Cannot iterate over a consumed stream.")
        self._consumed = True
        async for chunk in self._chunks:
            if chunk.finish_reason:
                self.finish_reason = chunk.finish_reason
            if chunk.usage is not None:
                self.token_usage = chunk.usage
            yield chunk


class OrchestrationClient(Protocol):
    async def chat_completion(self, body: dict[str, Any]) -> CompletionResult: ...

    async def stream(self, body: dict[str, Any]) -> OrchestrationStream: ...


class HttpOrchestrationClient:
    def __init__(
        self,
        deployment_url: str,
        *,
        token: str,
        resource_group: str = "default",
        http: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.deployment_url = deployment_url.rstrip("/")
        self.resource_group = resource_group
        self._token = token
        self.http = http or httpx.AsyncClient(timeout=timeout)

    def url_for(self, body: Mapping[str, Any]) -> str:
        if "orchestration_config" in body:
            return f"{self.deployment_url}/completion"
        return f"{self.deployment_url}/v2/completion"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "AI-Resource-Group": self.resource_group,
            "Content-Type": "application/json",
        }

    async def chat_completion(self, body: dict[str, Any]) -> CompletionResult:
        url = self.url_for(body)
        log.debug(f"POST {url}")
        response = await self.http.post(url, json=body, headers=self._headers())
        response.raise_for_status()
        return CompletionResult.from_body(
            response.json(), request_id=response.headers.get("x-request-id")
        )

    @staticmethod
    def _streaming_body(body: dict[str, Any]) -> dict[str, Any]:
        if "orchestration_config" in body:
            config = {**body["orchestration_config"], "stream": True}
            return {**body, "orchestration_config": config}
        config = {**body.get("config", {}), "stream": {"enabled": True}}
        return {**body, "config": config}

    async def stream(self, body: dict[str, Any]) -> OrchestrationStream:
        url = self.url_for(body)
        log.debug(f"POST {url} (stream)")
        request = self.http.build_request(
            "POST", url, json=self._streaming_body(body), headers=self._headers()
        )
        response = await self.http.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            response.raise_for_status()
        return OrchestrationStream(
            self._iter_chunks(response),
            request_id=response.headers.get("x-request-id"),
        )

    async def _iter_chunks(
        self, response: httpx.Response
    ) -> AsyncIterator[StreamChunk]:
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    break
                try:
                    payload = json.loads(data)
                except json.JSONDecodeError as e:
                    raise OrchestrationStreamError(f"Invalid SSE payload: {data}") from e
                if isinstance(payload, dict) and "error" in payload:
                    raise OrchestrationStreamError(
                        f"Error received from the orchestration service: {json.dumps(payload)}"
                    )
                yield StreamChunk.from_body(payload)
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "HttpOrchestrationClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


__all__ = [
    "OrchestrationStreamError",
    "TokenUsage",
    "WireToolCall",
    "ToolCallDelta",
    "CompletionResult",
    "StreamChunk",
    "OrchestrationStream",
    "OrchestrationClient",
    "HttpOrchestrationClient",
]
