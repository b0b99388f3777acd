from __future__ import annotations

from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

DEFAULT_API_URL = "https://api.perplexity.ai/chat/completions"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    perplexity_api_key: str = Field(..., alias="PERPLEXITY_API_KEY")
    perplexity_api_url: str = Field(DEFAULT_API_URL, alias="PERPLEXITY_API_URL")
    # sonar-deep-research routinely takes minutes to answer
    timeout_seconds: float = Field(300.0, gt=0, alias="PERPLEXITY_TIMEOUT_SECONDS")
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(3000, ge=1, le=65535, alias="PORT")
    allow_origins: Optional[str] = Field(None, alias="ALLOW_ORIGINS")
    keepalive_seconds: float = Field(15.0, gt=0, alias="SSE_KEEPALIVE_SECONDS")
    max_sessions: int = Field(0, ge=0, alias="MAX_SESSIONS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    @field_validator("perplexity_api_key")
    @classmethod
    def require_api_key(cls, value: str) -> str:
        key = (value or "").strip()
        if not key:
            raise ValueError("PERPLEXITY_API_KEY cannot be empty")
        return key

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return level

    def cors_origins(self) -> List[str]:
        if not self.allow_origins:
            return ["*"]
        return [origin.strip() for origin in self.allow_origins.split(",") if origin.strip()]


def load_settings() -> Settings:
    """Read settings once from the environment (and `.env`).

    Raises ConfigError when the API key is absent so callers can exit before
    binding a socket.
    """
    load_dotenv()
    try:
        return Settings()
    except ValidationError as exc:
        fields = {str(loc) for err in exc.errors() for loc in err.get("loc", ())}
        if "PERPLEXITY_API_KEY" in fields or "perplexity_api_key" in fields:
            raise ConfigError("PERPLEXITY_API_KEY environment variable is required") from exc
        raise ConfigError(f"invalid configuration: {exc}") from exc
