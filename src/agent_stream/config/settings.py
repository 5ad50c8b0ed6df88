"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-stream"
    app_env: str = "dev"
    log_level: str = "INFO"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""
    # Optional JSON script replayed by the scripted runtime.
    runtime_script_path: str = ""
    checkpoint_chars: int = Field(default=500, ge=1)
    output_content_limit: int = Field(default=50_000, ge=1)
    default_run_timeout_ms: int = Field(default=60 * 60 * 1000, ge=1)
    stream_keepalive_s: float = Field(default=15.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_STREAM_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
