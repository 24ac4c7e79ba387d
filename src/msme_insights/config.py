from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "MSME Insights"
    app_env: str = "development"
    timezone: str = "Asia/Kolkata"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./data/msme_insights.db"
    database_echo: bool = False
    db_timeout_sec: float = 15.0
    data_dir: Path = Path("./data")
    export_dir: Path = Path("./data/exports")

    openai_api_key: str = ""
    openai_base_url: str = "https://openrouter.ai/api/v1"
    openai_model_extractor: str = "openai/gpt-4o-mini"
    openai_timeout_sec: int = 60
    openai_app_url: str = "http://localhost:3000"

    extraction_timeout_sec: float = 45.0
    extraction_temperature: float = 0.3
    extraction_max_tokens: int = 1000
    extraction_confidence_threshold: float = 0.5

    trigger_message_threshold: int = 3
    trigger_recent_message_window: int = 5
    queue_batch_size: int = 10
    job_retention_days: int = 30
    job_stale_after_minutes: int = 30

    analytics_cache_enabled: bool = True
    analytics_cache_ttl_sec: int = 300
    default_page_size: int = 20
    max_page_size: int = 200
    export_max_rows: int = 10000
    anonymization_salt: str = "change-me"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("extraction_confidence_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("extraction_confidence_threshold must be between 0 and 1")
        return value

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
