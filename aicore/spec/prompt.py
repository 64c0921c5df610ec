from enum import Enum
import inspect
import json
from typing import Annotated, Literal, Sequence, Type
from pydantic import AliasChoices, BaseModel, Field, JsonValue
from openai.lib._parsing._completions import to_strict_json_schema  # type: ignore
from .base import *


class MessageBase(BaseModel):
    provider_options: ProviderOptions | None = Field(
        default=None,
        validation_alias=AliasChoices("providerOptions", "provider_options"),
        serialization_alias="providerOptions",
    )


class SystemMessage(MessageBase):
    role: Literal["system"] = "system"
    content: str


class MessagePartBase(BaseModel):
    provider_options: ProviderOptions | None = Field(
        default=None,
        validation_alias=AliasChoices("providerOptions", "provider_options"),
        serialization_alias="providerOptions",
    )


class MessagePartText(MessagePartBase):
    type: Literal["text"] = "text"
    text: str


class MessagePartReasoning(MessagePartBase):
    type: Literal["reasoning"] = "reasoning"
    text: str


class MessagePartFile(MessagePartBase):
    type: Literal["file"] = "file"
    data: DataContent
    media_type: str = Field(
        validation_alias=AliasChoices("mediaType", "media_type"),
        serialization_alias="mediaType",
    )
    filename: str | None = None


class MessagePartToolCall(MessagePartBase):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(
        validation_alias=AliasChoices("toolCallId", "tool_call_id"),
        serialization_alias="toolCallId",
    )
    tool_name: str = Field(
        validation_alias=AliasChoices("toolName", "tool_name"),
        serialization_alias="toolName",
    )
    input: JsonValue
    """Tool arguments, either as a JSON string or as an already-decoded value."""


class ToolResultOutputText(BaseModel):
    type: Literal["text"] = "text"
    value: str


class ToolResultOutputJson(BaseModel):
    type: Literal["json"] = "json"
    value: JsonValue


class ToolResultOutputExecutionDenied(BaseModel):
    type: Literal["execution-denied"] = "execution-denied"
    reason: str | None = None


class ToolResultOutputErrorText(BaseModel):
    type: Literal["error-text"] = "error-text"
    value: str


class ToolResultOutputErrorJson(BaseModel):
    type: Literal["error-json"] = "error-json"
    value: JsonValue


type ToolResultOutput = Annotated[
    ToolResultOutputText
    | ToolResultOutputJson
    | ToolResultOutputExecutionDenied
    | ToolResultOutputErrorText
    | ToolResultOutputErrorJson,
    Field(discriminator="type"),
]


class MessagePartToolResult(MessagePartBase):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str = Field(
        validation_alias=AliasChoices("toolCallId", "tool_call_id"),
        serialization_alias="toolCallId",
    )
    tool_name: str = Field(
        validation_alias=AliasChoices("toolName", "tool_name"),
        serialization_alias="toolName",
    )
    output: ToolResultOutput


type MessagePart = Annotated[
    MessagePartText
    | MessagePartReasoning
    | MessagePartFile
    | MessagePartToolCall
    | MessagePartToolResult,
    Field(discriminator="type"),
]

type UserMessagePart = Annotated[
    MessagePartText | MessagePartFile,
    Field(discriminator="type"),
]

type AssistantMessagePart = Annotated[
    MessagePartText
    | MessagePartReasoning
    | MessagePartFile
    | MessagePartToolCall
    | MessagePartToolResult,
    Field(discriminator="type"),
]


class UserMessage(MessageBase):
    role: Literal["user"] = "user"
    content: Sequence[UserMessagePart]

    @property
    def text(self) -> str:
        text = ""
        for part in self.content:
            if isinstance(part, MessagePartText):
                text += part.text
        return text


type ObjectType = BaseModel | Enum | str | int | float | bool | None | list[
    "ObjectType"
] | dict[str, "ObjectType"] | tuple["ObjectType", ...]


class _Result[X](BaseModel):
    result: X = Field(..., description="The result", title="Result")


class AssistantMessage(MessageBase):
    role: Literal["assistant"] = "assistant"
    content: Sequence[AssistantMessagePart]

    @property
    def text(self) -> str:
        text = ""
        for part in self.content:
            if isinstance(part, MessagePartText):
                text += part.text
        return text

    @property
    def tool_calls(self) -> list[ToolCall]:
        tool_calls = []
        for part in self.content:
            if isinstance(part, MessagePartToolCall):
                tool_calls.append(
                    ToolCall(
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                        input=(
                            part.input
                            if isinstance(part.input, str)
                            else json.dumps(part.input)
                        ),
                    )
                )
        return tool_calls

    @staticmethod
    def from_contents(contents: Sequence[Content]) -> "AssistantMessage":
        parts: list[AssistantMessagePart] = []
        for c in contents:
            match c.type:
                case "text":
                    parts.append(MessagePartText(text=c.text))
                case "tool-call":
                    parts.append(
                        MessagePartToolCall(
                            tool_call_id=c.tool_call_id,
                            tool_name=c.tool_name,
                            input=c.input,
                        )
                    )
        return AssistantMessage(content=parts)


class ToolMessage(MessageBase):
    role: Literal["tool"] = "tool"
    content: Sequence[MessagePartToolResult]


type Message = Annotated[
    SystemMessage | UserMessage | AssistantMessage | ToolMessage,
    Field(discriminator="role"),
]

type Prompt = Sequence[Message]


class ResponseFormatText(BaseModel):
    type: Literal["text"] = "text"


class ResponseFormatJson(BaseModel):
    type: Literal["json"] = "json"
    json_schema: JsonValue | None = Field(
        default=None,
        validation_alias=AliasChoices("schema", "json_schema"),
        serialization_alias="schema",
    )
    name: str | None = None
    description: str | None = None
    strict: bool | None = None

    @staticmethod
    def from_model[T: ObjectType](return_type: Type[T]) -> "ResponseFormatJson":
        class Result(_Result[return_type]): ...

        if inspect.isclass(return_type) and issubclass(return_type, BaseModel):
            response_format = return_type
        else:
            response_format = Result
        return ResponseFormatJson(
            json_schema=to_strict_json_schema(response_format),
            name=return_type.__name__,
            description=f"JSON object matching the schema of {return_type.__name__}",
            strict=True,
        )


type ResponseFormat = Annotated[
    ResponseFormatText | ResponseFormatJson,
    Field(discriminator="type"),
]

__all__ = [
    "MessageBase",
    "SystemMessage",
    "MessagePartBase",
    "MessagePartText",
    "MessagePartReasoning",
    "MessagePartFile",
    "MessagePartToolCall",
    "ToolResultOutputText",
    "ToolResultOutputJson",
    "ToolResultOutputExecutionDenied",
    "ToolResultOutputErrorText",
    "ToolResultOutputErrorJson",
    "ToolResultOutput",
    "MessagePartToolResult",
    "MessagePart",
    "UserMessagePart",
    "AssistantMessagePart",
    "UserMessage",
    "ObjectType",
    "AssistantMessage",
    "ToolMessage",
    "Message",
    "Prompt",
    "ResponseFormatText",
    "ResponseFormatJson",
    "ResponseFormat",
]
