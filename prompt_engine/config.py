from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    ENVIRONMENT: str = "production"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    DB_URL: str = "sqlite:///./data/prompts.db"
    IDENTITY_HEADER: str = "X-User-Id"
    CRON_SECRET: str | None = None
    cors_allow_origins: List[str] = ["*"]

    # research (Perplexity, OpenAI-compatible chat with web search)
    PERPLEXITY_API_KEY: str | None = None
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"
    PERPLEXITY_MODEL: str = "sonar"
    RESEARCH_TIMEOUT_SECONDS: float = 30.0
    RESEARCH_MAX_TOKENS: int = 4096
    RESEARCH_TEMPERATURE: float = 0.3

    # composition (OpenRouter)
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_COMPOSER_MODEL: str = "google/gemini-3-flash-preview"
    OPENROUTER_COMPOSER_FALLBACK_MODEL: str = "google/gemini-2.0-flash-001"
    COMPOSER_TIMEOUT_SECONDS: float = 60.0
    COMPOSER_MAX_TOKENS: int = 2048
    COMPOSER_TEMPERATURE: float = 0.85
    HOOK_MIN_WORDS: int = 8
    HOOK_MAX_WORDS: int = 18
    BLURB_MAX_PARAGRAPHS: int = 3

    # header images
    IMAGE_API_KEY: str | None = None
    IMAGE_BASE_URL: str = "https://openrouter.ai/api/v1"
    IMAGE_MODEL: str = "black-forest-labs/flux-1.1-pro"
    IMAGE_FALLBACK_MODEL: str = "black-forest-labs/flux-schnell"
    IMAGE_SIZE: str = "1024x1024"
    IMAGE_TIMEOUT_SECONDS: float = 120.0
    IMAGE_MAX_RETRIES: int = 3
    IMAGE_RETRY_DELAY_SECONDS: float = 1.0

    # jobs
    INTERESTS_PER_GENERATION: int = 3
    JOB_TIMEOUT_SECONDS: float = 600.0
    DAILY_BATCH_SIZE: int = 5
    DAILY_BATCH_PAUSE_SECONDS: float = 1.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
