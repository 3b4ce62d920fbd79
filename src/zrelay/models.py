"""Data models and schemas for the zrelay gateway."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """Chat message model."""
    role: str
    content: Union[str, List[Dict[str, Any]], None] = ""


class ChatCompletionRequest(BaseModel):
    """Request model for chat completions."""
    model_config = ConfigDict(extra="ignore")

    model: str
    messages: List[Message]
    stream: Optional[bool] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def effective_stream(self, default: bool) -> bool:
        """The client's stream flag, or ``default`` when the body omits it."""
        if "stream" not in self.model_fields_set:
            return default
        return bool(self.stream)


class Choice(BaseModel):
    """Choice model for chat completions."""
    index: int = 0
    message: Optional[Message] = None
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response model for chat completions."""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Field(default_factory=Usage)


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]


class ModelItem(BaseModel):
    id: str
    name: str
    owned_by: str = "openai"


class UpstreamRequest(BaseModel):
    """Body posted to the upstream chat endpoint."""
    model_config = ConfigDict(protected_namespaces=())

    stream: bool = True
    model: str
    messages: List[Message]
    params: Dict[str, Any] = Field(default_factory=dict)
    features: Dict[str, Any] = Field(default_factory=lambda: {"enable_thinking": True})
    background_tasks: Dict[str, bool] = Field(
        default_factory=lambda: {"title_generation": False, "tags_generation": False}
    )
    chat_id: str
    id: str
    mcp_servers: List[str] = Field(default_factory=list)
    model_item: ModelItem
    tool_servers: List[str] = Field(default_factory=list)
    variables: Dict[str, str] = Field(default_factory=dict)


# Upstream SSE payload. Unknown keys are ignored; a wrong type anywhere
# fails validation and the line is skipped. Upstream sends null for fields
# it has no value for, so every scalar here accepts None.


class UpstreamErrorBody(BaseModel):
    detail: Optional[str] = ""
    code: Optional[int] = 0


class UpstreamInner(BaseModel):
    error: Optional[UpstreamErrorBody] = None


class UpstreamData(BaseModel):
    delta_content: Optional[str] = ""
    phase: Optional[str] = ""
    done: Optional[bool] = False
    # Token counts are not relayed; the shape is not checked.
    usage: Optional[Dict[str, Any]] = None
    error: Optional[UpstreamErrorBody] = None
    inner: Optional[UpstreamInner] = Field(default=None, alias="data")


class UpstreamPayload(BaseModel):
    type: Optional[str] = ""
    data: Optional[UpstreamData] = None
    error: Optional[UpstreamErrorBody] = None
