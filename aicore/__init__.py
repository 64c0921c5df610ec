from __future__ import annotations

import logging
import logging.config
import tomllib
from pathlib import Path

LOGGER = logging.getLogger("aicore")


def init_logging(level: logging._Level = logging.INFO):
    config_file = Path.cwd() / "logging.toml"
    if config_file.exists():
        with open(config_file, "rb") as f:
            logging.config.dictConfig(tomllib.load(f))
    else:
        logging.basicConfig(
            level=level, format="[%(asctime)s][%(levelname)-8s][%(name)s] %(message)s"
        )
    logging.getLogger("httpx").setLevel(logging.WARNING)


from dotenv import load_dotenv

from . import spec, errors, settings, client
from .spec import (
    Message,
    SystemMessage,
    UserMessage,
    AssistantMessage,
    ToolMessage,
    MessagePartText,
    MessagePartFile,
    MessagePartReasoning,
    MessagePartToolCall,
    MessagePartToolResult,
    Prompt,
    StreamPart,
    ToolCall,
    Usage,
)
from .errors import (
    ErrorCategory,
    ProviderError,
    AuthenticationError,
    NoSuchModelError,
    APICallError,
    RateLimitError,
    ConfigurationError,
    NetworkError,
    ContentFilterError,
    StreamProtocolError,
    UnsupportedFunctionalityError,
    RequestAbortedError,
    convert_to_provider_error,
)
from .settings import ModelParams, Settings, load_settings
from .client import (
    CompletionResult,
    HttpOrchestrationClient,
    OrchestrationClient,
    OrchestrationStream,
    StreamChunk,
)
from . import llm
from .llm import GenerationOptions, create_provider, client_from_env
from .llm.providers import Provider, ProviderGenerationResult, ProviderStreamResult
from .llm.providers.orchestration import OrchestrationProvider

__all__ = [
    # submodules
    "spec",
    "errors",
    "settings",
    "client",
    "llm",
    # spec
    "Message",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "MessagePartText",
    "MessagePartFile",
    "MessagePartReasoning",
    "MessagePartToolCall",
    "MessagePartToolResult",
    "Prompt",
    "StreamPart",
    "ToolCall",
    "Usage",
    # errors
    "ErrorCategory",
    "ProviderError",
    "AuthenticationError",
    "NoSuchModelError",
    "APICallError",
    "RateLimitError",
    "ConfigurationError",
    "NetworkError",
    "ContentFilterError",
    "StreamProtocolError",
    "UnsupportedFunctionalityError",
    "RequestAbortedError",
    "convert_to_provider_error",
    # settings
    "ModelParams",
    "Settings",
    "load_settings",
    # client
    "CompletionResult",
    "HttpOrchestrationClient",
    "OrchestrationClient",
    "OrchestrationStream",
    "StreamChunk",
    # provider
    "GenerationOptions",
    "create_provider",
    "client_from_env",
    "Provider",
    "ProviderGenerationResult",
    "ProviderStreamResult",
    "OrchestrationProvider",
    # utils
    "init_logging",
    "load_dotenv",
]
