from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "qbd-guard"
    app_version: str = "0.1.0"

    api_key: Optional[str] = Field(default=None, alias="CONDUCTOR_API_KEY")
    end_user_id: Optional[str] = Field(default=None, alias="CONDUCTOR_END_USER_ID")
    api_base_url: str = Field(default="https://api.conductor.is/v1", alias="CONDUCTOR_API_BASE")

    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    read_retry_max_attempts: int = Field(default=1, ge=1, alias="READ_RETRY_MAX_ATTEMPTS")
    retry_max_wait_seconds: float = Field(default=15.0, alias="RETRY_MAX_WAIT")

    data_patterns_dir: Path = Field(default=Path("dataPatterns"), alias="DATA_PATTERNS_DIR")
    write_logs_dir: Path = Field(default=Path("logs"), alias="WRITE_LOGS_DIR")

    page_limit: int = Field(default=150, ge=1, alias="PAGE_LIMIT")
    default_max_pages: int = Field(default=20, ge=1, alias="DEFAULT_MAX_PAGES")
    duplicate_window_months: int = Field(default=6, ge=1, alias="DUPLICATE_WINDOW_MONTHS")
    duplicate_max_pages: int = Field(default=10, ge=1, alias="DUPLICATE_MAX_PAGES")
    po_max_pages: int = Field(default=10, ge=1, alias="PO_MAX_PAGES")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
