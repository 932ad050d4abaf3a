from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Crewboard"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    timezone: str = "America/Toronto"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/crewboard.db"
    data_dir: Path = Path("./data")

    default_horizon_days: int = 14
    max_horizon_days: int = 90
    immediate_start: bool = True

    event_stream_enabled: bool = True
    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("max_horizon_days", "default_horizon_days")
    @classmethod
    def validate_horizon(cls, value: int) -> int:
        if value < 1:
            raise ValueError("horizon settings must be at least one day")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
