import abc
import re
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Sequence
from aicore.llm import GenerationOptions
import aicore.spec as spec


@dataclass
class ProviderGenerationResult:
    content: Sequence[spec.Content]
    message: spec.AssistantMessage
    tool_calls: list[spec.ToolCall]
    finish_reason: spec.FinishReason
    raw_finish_reason: str | None
    usage: spec.Usage
    warnings: Sequence[spec.Warning]
    provider_metadata: spec.ProviderMetadata | None
    request_body: dict[str, Any] | None = None


@dataclass
class ProviderStreamResult:
    stream: AsyncGenerator[spec.StreamPart, None]
    warnings: list[spec.Warning]
    """Build-time warnings, extended with any found while the stream is consumed."""
    request_body: dict[str, Any] | None = None


class Provider(abc.ABC):
    provider: str
    model: str
    supported_urls: dict[str, Sequence[re.Pattern | str]]
    """
    Supported URL patterns by media type for the provider.

    The keys are media type patterns or full media types (e.g. `*\\/*` for everything, `image/*`, or `application/pdf`).
    and the values are arrays of regular expressions that match the URL paths.

    The matching should be against lower-case URLs.

    Matched URLs are supported natively by the model and are not downloaded.
    """

    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model
        self.supported_urls = {}

    def supports_url(self, url: str) -> bool:
        url = url.lower()
        for patterns in self.supported_urls.values():
            for p in patterns:
                if re.match(p, url):
                    return True
        return False

    @abc.abstractmethod
    async def do_generate(
        self, prompt: spec.Prompt, options: GenerationOptions
    ) -> ProviderGenerationResult: ...

    @abc.abstractmethod
    async def do_stream(
        self, prompt: spec.Prompt, options: GenerationOptions
    ) -> ProviderStreamResult: ...
