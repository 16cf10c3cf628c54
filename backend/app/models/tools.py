from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Any, Literal, Optional


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolDescriptor(BaseModel):
    """One entry of a tools/list result."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    description: str
    input_schema: dict = Field(default_factory=lambda: {"type": "object", "properties": {}})
    streaming: bool = False


class ToolCallParams(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    streaming: Optional[bool] = None

    @field_validator("arguments", mode="before")
    @classmethod
    def _null_arguments(cls, value: Any) -> Any:
        return {} if value is None else value


class ToolCallResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = False
    structured_content: Optional[dict] = None
    meta: Optional[dict] = Field(default=None, alias="_meta")

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolCallResult":
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @classmethod
    def error(cls, message: str) -> "ToolCallResult":
        return cls.text(message, is_error=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ToolCallRecord(BaseModel):
    """Record of a single tools/call invocation, kept in the registry call log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    call_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    streaming: bool = False
    status: str = "in_progress"  # in_progress | success | error
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    elapsed_ms: Optional[int] = None

    def complete(self, elapsed_ms: int) -> None:
        self.status = "success"
        self.completed_at = datetime.now(timezone.utc)
        self.elapsed_ms = elapsed_ms

    def fail(self, error: str, elapsed_ms: int) -> None:
        self.error = error
        self.status = "error"
        self.completed_at = datetime.now(timezone.utc)
        self.elapsed_ms = elapsed_ms


class PromptArgument(BaseModel):
    name: str
    description: str = ""
    required: bool = False


class PromptGetParams(BaseModel):
    name: str
    arguments: dict[str, str] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def _null_arguments(cls, value: Any) -> Any:
        return {} if value is None else value


class ResourceReadParams(BaseModel):
    uri: str
