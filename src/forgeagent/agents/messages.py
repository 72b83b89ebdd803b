"""
Wire types for the hosted model's Messages API.

A conversation is an ordered list of `Message`s; assistant content and tool
results are lists of typed `ContentBlock`s.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]
BlockType = Literal["text", "tool_use", "tool_result"]
StopReason = Literal["end_turn", "max_tokens", "stop_sequence", "tool_use"]


class ContentBlock(BaseModel):
    """One typed block of message content.

    Unknown block types returned by the service (e.g. thinking blocks) are kept
    verbatim so the conversation can be replayed.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    tool_use_id: str | None = None
    content: str | None = None
    is_error: bool | None = None

    @classmethod
    def text_block(cls, text: str) -> "ContentBlock":
        return cls(type="text", text=text)

    @classmethod
    def tool_use(cls, id: str, name: str, input: dict[str, Any]) -> "ContentBlock":
        return cls(type="tool_use", id=id, name=name, input=input)

    @classmethod
    def tool_result(cls, tool_use_id: str, content: str, is_error: bool = False) -> "ContentBlock":
        if is_error:
            return cls(type="tool_result", tool_use_id=tool_use_id, content=content, is_error=True)
        return cls(type="tool_result", tool_use_id=tool_use_id, content=content)


class Message(BaseModel):
    role: Role
    content: str | list[ContentBlock]

    def blocks(self) -> list[ContentBlock]:
        """Content as blocks; plain-text content yields no blocks."""
        return self.content if isinstance(self.content, list) else []


class ToolInputSchema(BaseModel):
    type: Literal["object"] = "object"
    properties: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    name: str
    description: str
    input_schema: ToolInputSchema


class ModelRequest(BaseModel):
    model: str
    max_tokens: int
    messages: list[Message]
    system: str | None = None
    tools: list[ToolDefinition] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ModelResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str = "message"
    role: Role = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)
    model: str = ""
    stop_reason: str | None = None
    usage: Usage = Field(default_factory=Usage)


class ToolCall(BaseModel):
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


def dump_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Serialise a conversation for checkpoint storage."""
    return [m.model_dump(mode="json", exclude_none=True) for m in messages]


def load_messages(data: list[dict[str, Any]]) -> list[Message]:
    return [Message.model_validate(m) for m in data]
