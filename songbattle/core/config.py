from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    env: str = Field(default="dev", validation_alias="ENV")
    database_url: str = Field(default="sqlite:///./dev.db", validation_alias="DATABASE_URL")
    cors_origins_raw: Optional[str] = Field(
        default=None,
        validation_alias="CORS_ORIGINS",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    scheduler_enabled: bool = Field(default=True, validation_alias="SCHEDULER_ENABLED")
    phase_tick_seconds: int = Field(default=60, ge=1, validation_alias="PHASE_TICK_SECONDS")
    task_poll_seconds: int = Field(default=15, ge=1, validation_alias="TASK_POLL_SECONDS")
    task_max_attempts: int = Field(default=5, ge=1, validation_alias="TASK_MAX_ATTEMPTS")

    artifact_webhook_url: str = Field(default="", validation_alias="ARTIFACT_WEBHOOK_URL")
    artifact_timeout_seconds: float = Field(default=10.0, gt=0, validation_alias="ARTIFACT_TIMEOUT_SECONDS")

    max_votes_per_round: int = Field(default=3, ge=1, validation_alias="MAX_VOTES_PER_ROUND")

    @field_validator("artifact_webhook_url", mode="before")
    @classmethod
    def normalize_artifact_webhook_url(cls, v: Optional[str]) -> str:
        """Read from env; default empty. Strip whitespace and trailing /."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return ""
        return str(v).strip().rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Optional[str]) -> str:
        if not v:
            return "INFO"
        return str(v).strip().upper()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return self.parse_cors_origins(self.cors_origins_raw)

    @staticmethod
    def parse_cors_origins(raw: Optional[str]) -> List[str]:
        if not raw:
            # Default to local frontend for dev
            return ["http://localhost:5173"]
        return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
