# /botrix/config/settings.py

from typing import Annotated, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "botrix"
    max_pool_size: int = 10
    min_pool_size: int = 1

    # Deployment
    environment: str = Field(default="production")
    log_level: str = "INFO"
    workers: int = 4
    api_version: str = "v1"
    api_key: str | None = None

    cors_allowed_origins: Annotated[List[str], NoDecode] = Field(default=["https://botrixai.com", "https://app.botrixai.com"])

    # Rate limits for the API routes
    rate_limit_per_minute: int = 100

    # Flow engine
    api_call_timeout_seconds: float = 10.0
    flow_max_steps: int = 200

    # Webhook security
    webhook_secret: str = "change-me-webhook-secret-key"
    webhook_signature_header: str = "x-webhook-signature"
    webhook_timestamp_header: str = "x-webhook-timestamp"
    webhook_max_age_seconds: int = 300
    allowed_webhook_origins: Annotated[List[str], NoDecode] = Field(default=["*"])
    webhook_rate_limit: int = 100
    webhook_rate_window_seconds: int = 60
    webhook_test_timeout_seconds: float = 10.0

    # Conversations
    conversation_history_max: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", "allowed_webhook_origins", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        """
        Accept both comma-separated strings and lists, so the values can be
        set from a plain environment variable.
        """
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("webhook_secret")
    @classmethod
    def secret_length_must_be_sufficient(cls, v):
        if len(v) < 16:
            raise ValueError("WEBHOOK_SECRET must be at least 16 characters long")
        return v

    @field_validator("api_call_timeout_seconds", "webhook_test_timeout_seconds")
    @classmethod
    def timeout_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("flow_max_steps")
    @classmethod
    def max_steps_must_be_positive(cls, v):
        if v < 1:
            raise ValueError("FLOW_MAX_STEPS must be at least 1")
        return v


settings = Settings()
