import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from errors import InvalidBackendResponse
from models import (
    BackendChatResponse,
    BackendRequest,
    ChatChoice,
    ChatMessage,
    ChatRequest,
    OpenAIChatCompletionResponse,
    Usage,
)

logger = logging.getLogger(__name__)

THINKING_EXTENSION: Dict[str, Any] = {"thinking": True}


class RequestTransformer:
    """Builds the NIM request body from an OpenAI chat completion request."""

    def __init__(
        self,
        thinking_mode: bool = False,
        default_temperature: float = 0.7,
        default_max_tokens: int = 1024,
        max_tokens_ceiling: int = 2048,
    ):
        self.thinking_mode = thinking_mode
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.max_tokens_ceiling = max_tokens_ceiling

    @classmethod
    def from_settings(cls, settings) -> "RequestTransformer":
        return cls(
            thinking_mode=settings.ENABLE_THINKING_MODE,
            default_temperature=settings.DEFAULT_TEMPERATURE,
            default_max_tokens=settings.DEFAULT_MAX_TOKENS,
            max_tokens_ceiling=settings.MAX_TOKENS_CEILING,
        )

    def clamp_max_tokens(self, requested: Optional[int]) -> int:
        # 0 and None both mean "not set"
        value = requested or self.default_max_tokens
        return min(max(value, 1), self.max_tokens_ceiling)

    def build(self, req: ChatRequest, backend_model: str) -> BackendRequest:
        extension = dict(THINKING_EXTENSION) if self.thinking_mode else None
        return BackendRequest(
            model=backend_model,
            messages=req.messages,
            temperature=req.temperature or self.default_temperature,
            top_p=1,
            max_tokens=self.clamp_max_tokens(req.max_tokens),
            stream=bool(req.stream),
            chat_template_kwargs=extension,
        )


class ResponseNormalizer:
    """
    Converts a complete NIM chat response into the OpenAI chat.completion shape.

    With show_reasoning enabled, a choice's reasoning_content is placed before
    its content inside the reasoning tags. The reasoning_content field itself
    never reaches the client.
    """

    def __init__(
        self,
        show_reasoning: bool = False,
        open_tag: str = "<think>\n",
        close_tag: str = "</think>\n\n",
    ):
        self.show_reasoning = show_reasoning
        self.open_tag = open_tag
        self.close_tag = close_tag

    @classmethod
    def from_settings(cls, settings) -> "ResponseNormalizer":
        return cls(
            show_reasoning=settings.SHOW_REASONING,
            open_tag=settings.REASONING_OPEN_TAG,
            close_tag=settings.REASONING_CLOSE_TAG,
        )

    def splice(self, reasoning: Optional[str], content: str) -> str:
        if self.show_reasoning and reasoning:
            return f"{self.open_tag}{reasoning}\n{self.close_tag}{content}"
        return content

    def normalize(self, backend_body: Any, client_model: str) -> OpenAIChatCompletionResponse:
        try:
            parsed = BackendChatResponse.model_validate(backend_body)
        except ValidationError as e:
            logger.error(f"Invalid response from backend, missing or malformed choices: {e}")
            raise InvalidBackendResponse("Invalid response from backend API")

        choices = []
        for position, choice in enumerate(parsed.choices):
            message = choice.message
            role = (message.role if message else None) or "assistant"
            content = (message.content if message else None) or ""
            reasoning = message.reasoning_content if message else None
            choices.append(
                ChatChoice(
                    index=choice.index if choice.index is not None else position,
                    message=ChatMessage(role=role, content=self.splice(reasoning, content)),
                    finish_reason=choice.finish_reason or "stop",
                )
            )

        usage = parsed.usage if parsed.usage is not None else Usage().model_dump()
        response = OpenAIChatCompletionResponse(model=client_model, choices=choices, usage=usage)
        logger.info(f"Normalized response, content length: {len(choices[0].message.content)} chars")
        return response
