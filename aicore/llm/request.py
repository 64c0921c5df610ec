"""
Request building: call options, per-call provider options and model defaults
are merged (in that precedence) into an orchestration request.
"""

import copy
import inspect
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, PydanticUserError

from aicore.errors import ErrorCategory, ProviderError
from aicore.llm import GenerationOptions
from aicore.llm.messages import WireMessage, convert_to_sap_messages
from aicore.settings import ModelParams, Settings, parse_provider_options
from aicore.spec import *

NO_N_SUPPORT_PREFIXES = ("amazon--", "anthropic--")

MODULE_NAMES = ("masking", "filtering", "grounding", "translation")

EMPTY_TOOL_PARAMETERS = {"type": "object", "properties": {}, "required": []}


def supports_n(model_id: str) -> bool:
    """Whether the model family accepts more than one completion per request."""
    return not model_id.startswith(NO_N_SUPPORT_PREFIXES)


def build_tool_parameters(schema: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise a JSON schema to the object-typed shape the service requires."""
    schema_type = schema.get("type")
    if schema_type is not None and schema_type != "object":
        return copy.deepcopy(EMPTY_TOOL_PARAMETERS)
    properties = schema.get("properties")
    required = schema.get("required")
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        required = []
    extra = {
        k: v for k, v in schema.items() if k not in ("type", "properties", "required")
    }
    return copy.deepcopy(
        {
            "type": "object",
            "properties": properties if isinstance(properties, dict) else {},
            "required": required,
            **extra,
        }
    )


def _first[T](*values: T | None) -> T | None:
    for v in values:
        if v is not None:
            return v
    return None


@dataclass(frozen=True)
class ModelConfig:
    name: str
    version: str
    params: dict[str, Any]


@dataclass(frozen=True)
class BuiltRequest:
    messages: list[WireMessage]
    model: ModelConfig
    tools: list[dict[str, Any]] | None
    response_format: dict[str, Any] | None
    modules: dict[str, dict[str, Any]]

    def primary_body(self) -> dict[str, Any]:
        """Current request shape: `config.modules.prompt_templating`."""
        prompt: dict[str, Any] = {"template": self.messages}
        if self.tools:
            prompt["tools"] = self.tools
        if self.response_format:
            prompt["response_format"] = self.response_format
        modules: dict[str, Any] = {
            "prompt_templating": {
                "prompt": prompt,
                "model": {
                    "name": self.model.name,
                    "version": self.model.version,
                    "params": self.model.params,
                },
            },
            **self.modules,
        }
        return copy.deepcopy({"config": {"modules": modules}})

    def fallback_body(self) -> dict[str, Any]:
        """Legacy request shape: `orchestration_config.module_configurations`."""
        templating: dict[str, Any] = {"template": self.messages}
        if self.tools:
            templating["tools"] = self.tools
        if self.response_format:
            templating["response_format"] = self.response_format
        configurations: dict[str, Any] = {
            "llm_module_config": {
                "model_name": self.model.name,
                "model_version": self.model.version,
                "model_params": self.model.params,
            },
            "templating_module_config": templating,
        }
        for name, config in self.modules.items():
            configurations[f"{name}_module_config"] = config
        return copy.deepcopy(
            {
                "orchestration_config": {"module_configurations": configurations},
                "input_params": {},
            }
        )


@dataclass(frozen=True)
class RequestCandidates:
    primary: dict[str, Any]
    fallback: dict[str, Any]

    @staticmethod
    def from_request(request: BuiltRequest) -> "RequestCandidates":
        return RequestCandidates(
            primary=request.primary_body(), fallback=request.fallback_body()
        )


def should_use_fallback(error: ProviderError) -> bool:
    """Only a validation rejection of the primary shape warrants the legacy shape."""
    return error.category == ErrorCategory.VALIDATION and error.status_code in (
        400,
        422,
    )


def _tool_parameters(tool: FunctionTool, warnings: list[Warning]) -> dict[str, Any]:
    schema = tool.input_schema
    if inspect.isclass(schema) and issubclass(schema, BaseModel):
        try:
            return build_tool_parameters(schema.model_json_schema())
        except PydanticUserError as e:
            warnings.append(
                UnsupportedSettingWarning(
                    setting=f"tool schema conversion for {tool.name}",
                    details=f"Failed to convert tool schema: {e}. Falling back to empty object schema.",
                )
            )
            return build_tool_parameters({})
    if isinstance(schema, dict) and schema:
        properties = schema.get("properties")
        if isinstance(properties, dict) and properties:
            return build_tool_parameters(schema)
    return build_tool_parameters({})


def _prepare_tools(
    call_tools: Sequence[Tool] | None,
    settings_tools: list[dict[str, Any]] | None,
    warnings: list[Warning],
) -> list[dict[str, Any]] | None:
    if settings_tools and call_tools:
        warnings.append(
            OtherWarning(
                message="Both settings.tools and call options.tools were provided; preferring call options.tools."
            )
        )
    if settings_tools and not call_tools:
        return copy.deepcopy(settings_tools)
    tools: list[dict[str, Any]] = []
    for t in call_tools or []:
        match t.type:
            case "function":
                f: dict[str, Any] = {
                    "name": t.name,
                    "description": t.description,
                    "parameters": _tool_parameters(t, warnings),
                }
                if f["description"] is None:
                    del f["description"]
                tools.append({"type": "function", "function": f})
            case _:
                warnings.append(
                    UnsupportedToolWarning(
                        tool=t, details="Only 'function' tool type is supported."
                    )
                )
    return tools or None


def _check_ranges(params: Mapping[str, Any], warnings: list[Warning]) -> None:
    # Advisory only: the service has the final say.
    temperature = params.get("temperature")
    if temperature is not None and not 0 <= temperature <= 2:
        warnings.append(
            OtherWarning(
                message=f"temperature={temperature} is outside typical range [0, 2]. The API may reject this value."
            )
        )
    top_p = params.get("top_p")
    if top_p is not None and not 0 <= top_p <= 1:
        warnings.append(
            OtherWarning(
                message=f"topP={top_p} is outside valid range [0, 1]. The API may reject this value."
            )
        )
    for key, label in (
        ("frequency_penalty", "frequencyPenalty"),
        ("presence_penalty", "presencePenalty"),
    ):
        value = params.get(key)
        if value is not None and not -2 <= value <= 2:
            warnings.append(
                OtherWarning(
                    message=f"{label}={value} is outside typical range [-2, 2]. The API may reject this value."
                )
            )
    max_tokens = params.get("max_tokens")
    if max_tokens is not None and max_tokens <= 0:
        warnings.append(
            OtherWarning(
                message=f"maxTokens={max_tokens} must be positive. The API will likely reject this value."
            )
        )
    n = params.get("n")
    if n is not None and n <= 0:
        warnings.append(
            OtherWarning(
                message=f"n={n} must be positive. The API will likely reject this value."
            )
        )


def _model_params(
    model_id: str,
    options: GenerationOptions,
    overrides: ModelParams,
    defaults: ModelParams,
) -> dict[str, Any]:
    params: dict[str, Any] = {**defaults.extra_params, **overrides.extra_params}
    resolved = {
        "max_tokens": _first(
            options.get("max_output_tokens"), overrides.max_tokens, defaults.max_tokens
        ),
        "temperature": _first(
            options.get("temperature"), overrides.temperature, defaults.temperature
        ),
        "top_p": _first(options.get("top_p"), overrides.top_p, defaults.top_p),
        "top_k": options.get("top_k"),
        "frequency_penalty": _first(
            options.get("frequency_penalty"),
            overrides.frequency_penalty,
            defaults.frequency_penalty,
        ),
        "presence_penalty": _first(
            options.get("presence_penalty"),
            overrides.presence_penalty,
            defaults.presence_penalty,
        ),
        "n": _first(overrides.n, defaults.n) if supports_n(model_id) else None,
        "parallel_tool_calls": _first(
            overrides.parallel_tool_calls, defaults.parallel_tool_calls
        ),
        "stop": list(options.get("stop_sequences") or []) or None,
        "seed": options.get("seed"),
    }
    for k, v in resolved.items():
        if v is not None:
            params[k] = v
    return params


def _response_format(
    rf: ResponseFormat | None,
    settings_rf: dict[str, Any] | None,
    has_tools: bool,
) -> dict[str, Any] | None:
    if rf is not None:
        if rf.type == "text":
            return {"type": "text"}
        if not rf.json_schema:
            return {"type": "json_object"}
        json_schema: dict[str, Any] = {"name": rf.name or "response"}
        if rf.description is not None:
            json_schema["description"] = rf.description
        json_schema["schema"] = rf.json_schema
        json_schema["strict"] = rf.strict
        return {"type": "json_schema", "json_schema": json_schema}
    if settings_rf:
        return copy.deepcopy(settings_rf)
    if not has_tools:
        return {"type": "text"}
    return None


def build_request(
    model_id: str,
    prompt: Prompt,
    options: GenerationOptions,
    settings: Settings,
) -> tuple[BuiltRequest, list[Warning]]:
    """
    Build an orchestration request.

    Returns the request along with the warnings collected while building it.
    Out-of-range parameters only produce warnings; they are still forwarded.
    """
    overrides = parse_provider_options(options.get("provider_options")) or Settings()
    warnings: list[Warning] = []

    include_reasoning = _first(
        overrides.include_reasoning, settings.include_reasoning, False
    )
    messages = convert_to_sap_messages(
        prompt, include_reasoning=bool(include_reasoning)
    )

    tools = _prepare_tools(
        options.get("tools"), _first(overrides.tools, settings.tools), warnings
    )

    params = _model_params(
        model_id,
        options,
        overrides.model_params or ModelParams(),
        settings.model_params or ModelParams(),
    )
    _check_ranges(params, warnings)

    tool_choice = options.get("tool_choice")
    if tool_choice is not None and tool_choice.type != "auto":
        warnings.append(
            UnsupportedSettingWarning(
                setting="toolChoice",
                details=f"SAP AI does not support toolChoice '{tool_choice.type}'. Using default 'auto' behavior.",
            )
        )

    rf = options.get("response_format")
    if rf is not None and rf.type == "json":
        warnings.append(
            OtherWarning(
                message="responseFormat JSON mode is forwarded to the underlying model; support and schema adherence depend on the model/deployment."
            )
        )

    modules: dict[str, dict[str, Any]] = {}
    for name in MODULE_NAMES:
        config = _first(getattr(overrides, name), getattr(settings, name))
        if config:
            modules[name] = copy.deepcopy(config)

    request = BuiltRequest(
        messages=messages,
        model=ModelConfig(
            name=model_id,
            version=overrides.model_version or settings.model_version or "latest",
            params=params,
        ),
        tools=tools,
        response_format=_response_format(
            rf, _first(overrides.response_format, settings.response_format), bool(tools)
        ),
        modules=modules,
    )
    return request, warnings


def summarize_request(prompt: Prompt, options: GenerationOptions) -> dict[str, Any]:
    """A non-sensitive view of a request, attached to errors for diagnostics."""
    stop_sequences = options.get("stop_sequences")
    rf = options.get("response_format")
    tool_choice = options.get("tool_choice")
    return {
        "prompt_messages": len(prompt),
        "has_image_parts": any(
            m.role == "user"
            and any(
                p.type == "file" and p.media_type.startswith("image/")
                for p in m.content
            )
            for m in prompt
        ),
        "tools": len(options.get("tools") or []),
        "max_output_tokens": options.get("max_output_tokens"),
        "temperature": options.get("temperature"),
        "top_p": options.get("top_p"),
        "top_k": options.get("top_k"),
        "seed": options.get("seed"),
        "stop_sequences": len(stop_sequences) if stop_sequences is not None else None,
        "response_format_type": rf.type if rf is not None else None,
        "tool_choice_type": tool_choice.type if tool_choice is not None else None,
    }


__all__ = [
    "NO_N_SUPPORT_PREFIXES",
    "supports_n",
    "build_tool_parameters",
    "ModelConfig",
    "BuiltRequest",
    "RequestCandidates",
    "should_use_fallback",
    "build_request",
    "summarize_request",
]
