import asyncio
import os
from typing import TYPE_CHECKING, Any, Mapping, Sequence, TypedDict

from aicore import spec
from aicore.client import HttpOrchestrationClient, OrchestrationClient
from aicore.settings import Settings, merge_settings, validate_model_params

if TYPE_CHECKING:
    from aicore.llm.providers.orchestration import OrchestrationProvider


class GenerationOptions(TypedDict, total=False):
    max_output_tokens: int | None
    temperature: float | None
    stop_sequences: Sequence[str] | None
    top_p: float | None
    top_k: int | None
    presence_penalty: float | None
    frequency_penalty: float | None
    response_format: spec.ResponseFormat | None
    seed: int | None
    tool_choice: spec.ToolChoice | None
    provider_options: spec.ProviderOptions | None
    tools: Sequence[spec.Tool] | None
    abort_signal: asyncio.Event | None


def _as_settings(settings: Settings | Mapping[str, Any] | None) -> Settings | None:
    if settings is None or isinstance(settings, Settings):
        return settings
    return Settings.model_validate(settings)


def client_from_env() -> HttpOrchestrationClient:
    deployment_url = os.environ.get("AICORE_DEPLOYMENT_URL")
    if not deployment_url:
        raise ValueError("AICORE_DEPLOYMENT_URL environment variable not set")
    token = os.environ.get("AICORE_AUTH_TOKEN")
    if not token:
        raise ValueError("AICORE_AUTH_TOKEN environment variable not set")
    return HttpOrchestrationClient(
        deployment_url,
        token=token,
        resource_group=os.environ.get("AICORE_RESOURCE_GROUP", "default"),
    )


def create_provider(
    model: str,
    settings: Settings | Mapping[str, Any] | None = None,
    *,
    default_settings: Settings | Mapping[str, Any] | None = None,
    client: OrchestrationClient | None = None,
) -> "OrchestrationProvider":
    """
    Create a provider for `model`.

    `settings` are shallow-merged over `default_settings`. Without an explicit
    `client`, one is built from the `AICORE_*` environment variables.
    """
    from aicore.llm.providers.orchestration import OrchestrationProvider

    defaults = _as_settings(default_settings)
    if defaults is not None and defaults.model_params is not None:
        validate_model_params(defaults.model_params)
    merged = merge_settings(defaults, _as_settings(settings))
    return OrchestrationProvider(
        model=model, settings=merged, client=client or client_from_env()
    )


__all__ = ["GenerationOptions", "create_provider", "client_from_env"]
