from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4-turbo-preview"
    openai_base_url: str = "https://api.openai.com/v1"
    use_real_llm: bool = False
    llm_timeout_seconds: float = 45.0
    database_path: str = "./data/erp.db"
    data_dir: str = "./data"
    api_port: int = 8000
    frontend_url: str = "http://localhost:3000"

    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24

    log_level: str = "INFO"
    log_format: str = "json"

    # Real-time event buffering
    event_buffer_size: int = 50
    event_replay_limit: int = 10
    event_retention_hours: int = 24
    buffer_cleanup_seconds: int = 300

    # Automation engine
    workflow_queue_seconds: float = 5.0
    workflow_batch_size: int = 5
    schedule_check_seconds: int = 60
    workflow_review_seconds: int = 3600

    # AI insights; 0 disables the periodic refresh
    insight_refresh_seconds: int = 1800
    critical_alert_seconds: int = 60

    max_negotiation_rounds: int = 5
    risk_cache_hours: int = 24

    @property
    def resolved_database_path(self) -> Path:
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return Path(__file__).resolve().parents[2] / path

    @property
    def resolved_data_dir(self) -> Path:
        path = Path(self.data_dir)
        if path.is_absolute():
            return path
        return Path(__file__).resolve().parents[2] / path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
