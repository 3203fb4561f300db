from functools import lru_cache
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    server_port: int = 8000
    # Allow both localhost and 127.0.0.1 for local development
    allowed_origins: List[AnyHttpUrl] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]  # type: ignore
    database_url: str = "sqlite+aiosqlite:///./lume.db"
    log_level: str = "INFO"

    # Provider keys; a provider without a key falls back to a mock stream
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    tavily_api_key: Optional[str] = None

    # HS256 secret for bearer tokens issued by the web frontend
    auth_secret: Optional[str] = None

    # Completion defaults
    default_model_id: str = "claude-3-7-sonnet-20250219"
    title_model_id: str = "claude-3-5-haiku-20241022"
    temperature: float = 0.7
    max_output_tokens: int = 4000
    max_tool_steps: int = 5
    thinking_budget_tokens: int = 2048
    request_timeout_seconds: float = 120.0

    chat_rate_limit: int = 30
    chat_rate_window_seconds: int = 60

    # pydantic-settings v2 style config: load env from both ../.env (repo root) and .env
    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=("../.env", ".env"),
        extra="ignore",  # ignore env vars not defined as fields
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
