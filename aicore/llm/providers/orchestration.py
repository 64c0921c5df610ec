import asyncio
import re
from typing import Any, Callable, Coroutine, override

from aicore import LOGGER
from aicore.client import OrchestrationClient
from aicore.errors import (
    ProviderError,
    RequestAbortedError,
    convert_to_provider_error,
)
from aicore.llm.request import (
    RequestCandidates,
    build_request,
    should_use_fallback,
    summarize_request,
)
from aicore.llm.response import parse_completion
from aicore.llm.stream import StreamTransformer
from aicore.settings import PROVIDER_NAME, Settings
from aicore.spec import *
from . import (
    GenerationOptions,
    Provider,
    ProviderGenerationResult,
    ProviderStreamResult,
)

log = LOGGER.getChild("orchestration")

URL = "sap-ai:orchestration"


async def race_abort[T](
    coro: Coroutine[Any, Any, T], abort_signal: asyncio.Event | None
) -> T:
    """
    Await `coro` unless `abort_signal` is set first.

    Only the initial dispatch is raced; server-side cancellation is not guaranteed.
    """
    if abort_signal is None:
        return await coro
    if abort_signal.is_set():
        coro.close()
        raise RequestAbortedError("Request aborted: abort signal was already set")
    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(abort_signal.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
    if task in done:
        return task.result()
    raise RequestAbortedError("Request aborted by abort signal")


class OrchestrationProvider(Provider):
    def __init__(
        self,
        model: str,
        settings: Settings | None = None,
        *,
        client: OrchestrationClient,
    ):
        super().__init__(provider=PROVIDER_NAME, model=model)
        self.settings = settings or Settings()
        self.client = client
        self.supported_urls = {
            "image/*": [re.compile(r"^https://.*$"), re.compile(r"^data:image/.*$")]
        }

    def _classify(
        self, error: Exception, operation: str, summary: dict[str, Any]
    ) -> ProviderError:
        converted = convert_to_provider_error(
            error, operation=operation, request_body=summary, url=URL
        )
        # errors raised before dispatch carry no request context yet
        if converted.request_body_values is None:
            converted.request_body_values = summary
        if converted.url is None:
            converted.url = URL
        return converted

    async def _dispatch[T](
        self,
        send: Callable[[dict[str, Any]], Coroutine[Any, Any, T]],
        candidates: RequestCandidates,
        abort_signal: asyncio.Event | None,
        operation: str,
        summary: dict[str, Any],
    ) -> tuple[T, dict[str, Any]]:
        log.debug(
            f"{operation}: sending {summary['prompt_messages']} messages to {self.model}"
        )
        try:
            result = await race_abort(send(candidates.primary), abort_signal)
            return result, candidates.primary
        except RequestAbortedError:
            raise
        except Exception as e:
            error = self._classify(e, operation, summary)
            if not should_use_fallback(error):
                if error is e:
                    raise
                raise error from e
            log.debug(
                f"{operation}: request rejected ({error.status_code}), retrying with the legacy request shape"
            )
        result = await race_abort(send(candidates.fallback), abort_signal)
        return result, candidates.fallback

    @override
    async def do_generate(
        self, prompt: Prompt, options: GenerationOptions
    ) -> ProviderGenerationResult:
        summary = summarize_request(prompt, options)
        try:
            request, warnings = build_request(
                self.model, prompt, options, self.settings
            )
            result, body = await self._dispatch(
                self.client.chat_completion,
                RequestCandidates.from_request(request),
                options.get("abort_signal"),
                "doGenerate",
                summary,
            )
        except Exception as e:
            error = self._classify(e, "doGenerate", summary)
            if error is e:
                raise
            raise error from e

        content, tool_calls, finish_reason, usage = parse_completion(result)
        metadata: dict[str, Any] = {
            "finishReason": result.finish_reason or "unknown",
            "finishReasonMapped": finish_reason,
        }
        if result.request_id:
            metadata["requestId"] = result.request_id
        return ProviderGenerationResult(
            content=content,
            message=AssistantMessage.from_contents(content),
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            raw_finish_reason=result.finish_reason,
            usage=usage,
            warnings=warnings,
            provider_metadata={PROVIDER_NAME: metadata},
            request_body=body,
        )

    @override
    async def do_stream(
        self, prompt: Prompt, options: GenerationOptions
    ) -> ProviderStreamResult:
        summary = summarize_request(prompt, options)
        try:
            request, warnings = build_request(
                self.model, prompt, options, self.settings
            )
            stream, body = await self._dispatch(
                self.client.stream,
                RequestCandidates.from_request(request),
                options.get("abort_signal"),
                "doStream",
                summary,
            )
        except Exception as e:
            error = self._classify(e, "doStream", summary)
            if error is e:
                raise
            raise error from e

        transformer = StreamTransformer(
            stream,
            model_id=self.model,
            warnings=warnings,
            classify=lambda e: self._classify(e, "doStream", summary),
        )
        return ProviderStreamResult(
            stream=transformer.transform(),
            warnings=transformer.warnings,
            request_body=body,
        )


__all__ = ["OrchestrationProvider", "race_abort"]
