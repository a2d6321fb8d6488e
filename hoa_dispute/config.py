from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Round-robin order for the per-chunk pipelines
ANALYSIS_MODELS = [
    "openai/gpt-4o",
    "openai/gpt-4.1",
    "meta/Llama-3.2-11B-Vision-Instruct",
]
SUGGESTION_MODELS = list(ANALYSIS_MODELS)

# Single-shot endpoints (legal Q&A, dispute letters)
CHAT_MODEL = "openai/gpt-4o"

CHUNK_SIZE = 8000
MIN_CHUNK_LENGTH = 10
# Below this many characters of native text we assume a scanned document
MIN_TEXT_LENGTH = 20
MAX_ITEMS_PER_CHUNK = 8

OCR_DPI = 300
DEFAULT_OCR_LANG = "eng"


class Settings(BaseSettings):
    """Runtime settings read from the environment (or a local .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    github_token: Optional[str] = None
    inference_url: str = "https://models.github.ai/inference/chat/completions"
    request_timeout: float = 180.0
    # 0 disables the limit
    max_concurrency: int = 8
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
