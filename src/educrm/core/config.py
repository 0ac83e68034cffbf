# src/educrm/core/config.py
from __future__ import annotations

import json
from typing import Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---- App ----
    APP_NAME: str = "Education Center CRM"
    APP_VERSION: str = "1.0.0"
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8080
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    SERVER_READ_TIMEOUT: float = 10.0
    SERVER_WRITE_TIMEOUT: float = 10.0
    SERVER_SHUTDOWN_TIMEOUT: float = 30.0

    # ---- DB ----
    # DATABASE_URL wins; otherwise assembled from the DB_* parts below
    DATABASE_URL: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "ASYNC_DATABASE_URL"),
    )
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "educrm"
    DB_SSLMODE: str = "disable"
    DB_TIMEZONE: str = "UTC"
    DB_MAX_OPEN_CONNS: int = 25
    DB_MAX_IDLE_CONNS: int = 5
    DB_CONN_MAX_LIFETIME: int = 300  # seconds
    DB_ECHO: bool = False
    TESTING: bool = False

    # ---- Auth ----
    AUTH_SERVICE_ADDR: str = "localhost:50051"
    SKIP_AUTH: bool = False
    SESSION_TTL_HOURS: int = 24
    SESSION_RETENTION_DAYS: int = 7
    BCRYPT_ROUNDS: int = 12

    # ---- Logging ----
    LOG_LEVEL: Literal["debug", "info", "warn", "error"] = "info"
    LOG_FORMAT: Literal["json", "pretty"] = "json"
    LOG_OUTPUT: Literal["stdout", "file", "both"] = "stdout"
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_SIZE: int = 100  # megabytes
    LOG_MAX_BACKUPS: int = 3

    # ---- Web / CORS / rate limiting ----
    cors_origins_raw: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CORS_ORIGINS"),
    )
    cors_origins: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("CORS_ORIGINS_PARSED_DO_NOT_USE"),
    )
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_RPS: float = 20.0
    RATE_LIMIT_BURST: int = 40
    RATE_LIMIT_MAX_ENTRIES: int = 10_000
    MAINTENANCE_INTERVAL_SECONDS: int = 60

    # ---- Metrics ----
    METRICS_ENABLED: bool = True
    METRICS_PORT: int = 9090
    METRICS_PATH: str = "/metrics"

    # ---- Files ----
    UPLOAD_ROOT: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # ---- Notifications ----
    NOTIFICATION_MAX_RETRIES: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )

        # bcrypt below cost 10 is refused
        if self.BCRYPT_ROUNDS < 10:
            self.BCRYPT_ROUNDS = 10

        parsed: list[str] = []
        raw = (self.cors_origins_raw or "").strip()
        if raw.startswith("["):
            data = json.loads(raw)
            if isinstance(data, list):
                parsed = [str(x).strip() for x in data if x]
        elif raw:
            parsed = [p.strip() for p in raw.split(",") if p.strip()]
        self.cors_origins = parsed or ["*"]
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_sqlite(self) -> bool:
        return (self.DATABASE_URL or "").startswith("sqlite")


settings = Settings()
__all__ = ["settings", "Settings"]
