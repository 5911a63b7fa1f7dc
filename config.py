from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MODEL_MAPPING: Dict[str, str] = {
    "gpt-3.5-turbo": "meta/llama-3.1-8b-instruct",
    "gpt-4": "meta/llama-3.1-70b-instruct",
    "gpt-4-turbo": "meta/llama-3.3-70b-instruct",
    "gpt-4o": "meta/llama-3.3-70b-instruct",
    "claude-3-opus": "meta/llama-3.1-70b-instruct",
    "claude-3-sonnet": "meta/llama-3.1-8b-instruct",
    "gemini-pro": "nvidia/llama-3.1-nemotron-70b-instruct",
}


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    NIM_API_BASE: str = "https://integrate.api.nvidia.com/v1"
    NIM_API_KEY: Optional[str] = None  # Bearer token for the NIM backend

    # Feature toggles, read once when the app is built
    SHOW_REASONING: bool = False  # Splice reasoning_content into content inside <think> tags
    ENABLE_THINKING_MODE: bool = False  # Send chat_template_kwargs.thinking to the backend

    # Model routing
    MODEL_MAPPING: Dict[str, str] = DEFAULT_MODEL_MAPPING
    LARGE_MODEL_MARKERS: List[str] = ["gpt-4", "claude-opus"]
    FALLBACK_LARGE_MODEL: str = "meta/llama-3.1-70b-instruct"
    FALLBACK_SMALL_MODEL: str = "meta/llama-3.1-8b-instruct"

    # Request shaping
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 1024
    MAX_TOKENS_CEILING: int = 2048

    REASONING_OPEN_TAG: str = "<think>\n"
    REASONING_CLOSE_TAG: str = "</think>\n\n"

    REQUEST_TIMEOUT: float = 90.0  # Seconds allowed for one backend call

    SERVICE_NAME: str = "OpenAI to NVIDIA NIM Proxy"
    MODEL_OWNER: str = "nvidia-nim-proxy"

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    LOG_LEVEL: str = "INFO"  # Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL, NONE)


settings = Settings()
