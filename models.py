import json
import time
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Inbound (OpenAI) Request ---
class ChatRequest(BaseModel):
    """Represents the request body for OpenAI's /v1/chat/completions."""

    model_config = ConfigDict(extra="ignore")

    model: str = Field(..., description="Client-facing model name, routed to a backend model.")
    # Messages are forwarded as-is; the backend validates their shape.
    messages: List[Any] = Field(..., description="A list of messages comprising the conversation so far.")
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: Optional[bool] = False


# --- Backend (NIM) Request ---
class BackendRequest(BaseModel):
    """Request body sent to the NIM /chat/completions endpoint."""

    model_config = ConfigDict(frozen=True)

    model: str
    messages: List[Any]
    temperature: float
    top_p: float = 1
    max_tokens: int
    stream: bool = False
    # Vendor extension; omitted from the payload entirely when thinking mode is off.
    chat_template_kwargs: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# --- Backend (NIM) Response Variants ---
class BackendMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    content: Optional[str] = None
    reasoning_content: Optional[str] = None


class BackendChoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: Optional[int] = None
    message: Optional[BackendMessage] = None
    finish_reason: Optional[str] = None


class BackendChatResponse(BaseModel):
    """A complete (non-streaming) backend response."""

    model_config = ConfigDict(extra="allow")

    choices: List[BackendChoice] = Field(..., min_length=1)
    usage: Optional[Dict[str, Any]] = None


class StreamDelta(BaseModel):
    """The delta of one streamed backend event. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    content: Optional[str] = None
    reasoning_content: Optional[str] = None

    @field_validator("content", "reasoning_content", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Optional[str]:
        # Numbers are spliced as their JSON text; other non-string values count as absent.
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return json.dumps(value)
        return None


# --- OpenAI Chat Completion Response ---
class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class OpenAIChatCompletionResponse(BaseModel):
    """Represents the response body for OpenAI's /v1/chat/completions."""

    id: str = Field(default_factory=lambda: f"chatcmpl-{int(time.time() * 1000)}")
    object: str = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str  # The client-facing model name, never the backend id
    choices: List[ChatChoice]
    usage: Dict[str, Any] = Field(default_factory=lambda: Usage().model_dump())


# --- OpenAI Model Definition ---
class OpenAIModel(BaseModel):
    """Represents the structure of a model object in OpenAI's /v1/models format."""

    id: str = Field(..., description="The model identifier, which can be referenced in the API endpoints.")
    object: str = Field(default="model", description="The object type, which is always 'model'.")
    created: int = Field(default_factory=lambda: int(time.time()), description="The Unix timestamp (in seconds) when the model was created.")
    owned_by: str = Field(default="nvidia-nim-proxy", description="The organization that owns the model.")


class OpenAIModelList(BaseModel):
    """Represents the structure of the list returned by OpenAI's /v1/models endpoint."""

    object: str = Field("list", description="The object type, which is always 'list'.")
    data: List[OpenAIModel] = Field(..., description="A list of model objects.")


# --- Errors ---
class ErrorDetail(BaseModel):
    message: str
    type: str
    code: int


class ErrorResponse(BaseModel):
    error: ErrorDetail
