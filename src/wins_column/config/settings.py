"""Pydantic-based settings for wins_column."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the wins_column service and worker."""

    model_config = SettingsConfigDict(
        env_prefix="WINS_COLUMN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8010, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: Literal["development", "production"] = Field(
        default="development", description="Selects the processor configuration preset"
    )

    # Database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///data/wins_column.db", description="Async SQLAlchemy database URL"
    )

    # OpenAI settings
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="Override for the OpenAI API base URL")
    openai_model: str = Field(default="gpt-4o-mini", description="Model used for diff summaries")
    openai_max_tokens: int = Field(default=800, description="Max completion tokens per summary")

    # GitHub settings
    github_api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")
    github_token: Optional[str] = Field(default=None, description="Token used for repository API calls")
    github_webhook_secret: Optional[str] = Field(default=None, description="Secret for X-Hub-Signature-256")

    # Email settings
    resend_api_key: Optional[str] = Field(default=None, description="Resend API key")
    resend_api_url: str = Field(default="https://api.resend.com", description="Resend API base URL")
    email_from: str = Field(default="Wins Column <updates@winscolumn.dev>", description="Sender address")

    # Processor overrides (None keeps the environment preset)
    run_processor: bool = Field(default=True, description="Start the job processor inside the API process")
    max_concurrent_jobs: Optional[int] = Field(default=None, description="Concurrent job cap")
    job_timeout_ms: Optional[int] = Field(default=None, description="Per-job handler timeout")
    poll_interval_ms: Optional[int] = Field(default=None, description="Ready-job poll interval")

    @property
    def log_format(self) -> str:
        """Log message format."""
        return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Global settings instance
settings = Settings()
