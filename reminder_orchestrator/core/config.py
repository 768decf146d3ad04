"""Application configuration and settings."""

from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="reminder-orchestrator")
    service_version: str = Field(default="1.0.0")
    port: int = Field(default=8000)
    host: str = Field(default="0.0.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    environment: str = Field(default="development")

    # Database
    database_url: str = Field(default="sqlite:///./reminders.db")
    database_echo: bool = Field(default=False)

    # Inbound authentication
    webhook_secret: str = Field(default="")
    cron_secret: str = Field(default="")

    # Accounting system (Zoho Books compatible)
    accounting_api_url: str = Field(default="https://www.zohoapis.com/books/v3")
    accounting_api_token: str = Field(default="")
    accounting_timeout: int = Field(default=30)
    accounting_page_size: int = Field(default=200)

    # Voice call dispatcher
    voice_service_url: str = Field(default="http://localhost:8010")
    voice_service_api_key: str = Field(default="")
    voice_timeout: int = Field(default=20)

    # Twilio SMS
    twilio_api_url: str = Field(default="https://api.twilio.com")
    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")
    twilio_from_number: str = Field(default="")
    sms_status_callback_url: Optional[str] = Field(default=None)
    sms_timeout: int = Field(default=15)

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(default=5)
    circuit_breaker_timeout_seconds: int = Field(default=60)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay_seconds: float = Field(default=1.0)

    # Sync Engine
    sync_max_concurrency: int = Field(default=4)
    sync_overlap_days: int = Field(default=1)
    sync_lookahead_buffer_days: int = Field(default=5)

    # Reminder Processor
    processor_batch_size: int = Field(default=200)
    rate_limit_backoff_multiplier: float = Field(default=2.0)
    stuck_reminder_timeout_minutes: int = Field(default=30)

    # CORS
    enable_cors: bool = Field(default=False)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("sync_max_concurrency", "processor_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("rate_limit_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("Backoff multiplier must be at least 1.0")
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
