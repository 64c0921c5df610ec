from pathlib import Path
import tomllib
from typing import Any, Mapping

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    ValidationError,
)

from aicore.errors import ConfigurationError

PROVIDER_NAME = "sap-ai"

type ModuleConfig = dict[str, JsonValue]


class ModelParams(BaseModel):
    """Generation parameters forwarded to the model. Unknown keys are kept and forwarded as-is."""

    model_config = ConfigDict(extra="allow")

    frequency_penalty: float | None = Field(
        default=None,
        validation_alias=AliasChoices("frequencyPenalty", "frequency_penalty"),
        serialization_alias="frequencyPenalty",
    )
    max_tokens: int | None = Field(
        default=None,
        validation_alias=AliasChoices("maxTokens", "max_tokens"),
        serialization_alias="maxTokens",
    )
    n: int | None = None
    parallel_tool_calls: bool | None = None
    presence_penalty: float | None = Field(
        default=None,
        validation_alias=AliasChoices("presencePenalty", "presence_penalty"),
        serialization_alias="presencePenalty",
    )
    temperature: float | None = None
    top_p: float | None = Field(
        default=None,
        validation_alias=AliasChoices("topP", "top_p"),
        serialization_alias="topP",
    )

    @property
    def extra_params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class _CheckedModelParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    frequency_penalty: float | None = Field(default=None, ge=-2, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    n: int | None = Field(default=None, gt=0)
    parallel_tool_calls: bool | None = None
    presence_penalty: float | None = Field(default=None, ge=-2, le=2)
    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, ge=0, le=1)


def validate_model_params(params: ModelParams | Mapping[str, Any]) -> ModelParams:
    """Strictly validate model parameter ranges. Raises `ConfigurationError` on violation."""
    if isinstance(params, ModelParams):
        params = params.model_dump(exclude_none=True)
    try:
        checked = _CheckedModelParams.model_validate(
            ModelParams.model_validate(params).model_dump(exclude_none=True)
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid model parameters: {e}") from e
    return ModelParams.model_validate(checked.model_dump(exclude_none=True))


class Settings(BaseModel):
    """
    Model settings. Used both as per-model defaults and, under the `sap-ai`
    key of `provider_options`, as per-call overrides.
    """

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    model_version: str | None = Field(
        default=None,
        validation_alias=AliasChoices("modelVersion", "model_version"),
        serialization_alias="modelVersion",
    )
    include_reasoning: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("includeReasoning", "include_reasoning"),
        serialization_alias="includeReasoning",
    )
    model_params: ModelParams | None = Field(
        default=None,
        validation_alias=AliasChoices("modelParams", "model_params"),
        serialization_alias="modelParams",
    )
    masking: ModuleConfig | None = None
    filtering: ModuleConfig | None = None
    grounding: ModuleConfig | None = None
    translation: ModuleConfig | None = None
    response_format: dict[str, JsonValue] | None = Field(
        default=None,
        validation_alias=AliasChoices("responseFormat", "response_format"),
        serialization_alias="responseFormat",
    )
    """Response format in wire shape: `{"type": "text" | "json_object" | "json_schema", ...}`."""
    tools: list[dict[str, JsonValue]] | None = None
    """Tools in wire shape: `{"type": "function", "function": {...}}`."""


def parse_provider_options(
    provider_options: Mapping[str, Mapping[str, Any]] | None,
) -> Settings | None:
    if not provider_options or PROVIDER_NAME not in provider_options:
        return None
    try:
        return Settings.model_validate(provider_options[PROVIDER_NAME])
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid provider options for '{PROVIDER_NAME}': {e}"
        ) from e


def merge_settings(defaults: Settings | None, settings: Settings | None) -> Settings:
    """
    Shallow merge: fields set on `settings` replace those of `defaults`,
    except `model_params`, which is merged one level deeper.
    """
    defaults = defaults or Settings()
    settings = settings or Settings()
    merged = defaults.model_dump(exclude_unset=True)
    merged.update(settings.model_dump(exclude_unset=True))
    model_params = {
        **(
            defaults.model_params.model_dump(exclude_unset=True)
            if defaults.model_params
            else {}
        ),
        **(
            settings.model_params.model_dump(exclude_unset=True)
            if settings.model_params
            else {}
        ),
    }
    merged["model_params"] = model_params
    return Settings.model_validate(merged)


def load_settings(path: Path | str) -> Settings:
    """Load model settings from a TOML file."""
    with open(path, "rb") as f:
        data = tomllib.load(f)
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings file {path}: {e}") from e


__all__ = [
    "PROVIDER_NAME",
    "ModuleConfig",
    "ModelParams",
    "Settings",
    "validate_model_params",
    "parse_provider_options",
    "merge_settings",
    "load_settings",
]
