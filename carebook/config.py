# carebook/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "CareBook Appointment Service"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")

    # Storage
    database_url: str = Field(default="sqlite:///./carebook.db", alias="DATABASE_URL")
    storage_backend: str = Field(default="sql", alias="STORAGE_BACKEND")

    # Security
    secret_key: str = Field(..., alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    cron_secret: Optional[str] = Field(default=None, alias="CRON_SECRET")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    # Booking rules
    default_timezone: str = Field(default="Asia/Kolkata", alias="DEFAULT_TIMEZONE")
    subscription_grace_days: int = Field(default=3, alias="SUBSCRIPTION_GRACE_DAYS")
    patient_token_ttl_days: int = Field(default=7, alias="PATIENT_TOKEN_TTL_DAYS")
    modify_window_hours: int = Field(default=8, alias="MODIFY_WINDOW_HOURS")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    booking_rate_limit: str = Field(default="10/hour", alias="BOOKING_RATE_LIMIT")

    # Background jobs
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    outbox_batch_size: int = Field(default=50, alias="OUTBOX_BATCH_SIZE")
    outbox_stale_minutes: int = Field(default=10, alias="OUTBOX_STALE_MINUTES")
    outbox_max_attempts: int = Field(default=5, alias="OUTBOX_MAX_ATTEMPTS")

    # WhatsApp (Twilio)
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_number: Optional[str] = Field(default=None, alias="TWILIO_WHATSAPP_NUMBER")

    # Email (SendGrid)
    sendgrid_api_key: Optional[str] = Field(default=None, alias="SENDGRID_API_KEY")
    sender_email: str = Field(default="noreply@carebook.app", alias="SENDER_EMAIL")

    # Real-time (Pusher)
    pusher_app_id: Optional[str] = Field(default=None, alias="PUSHER_APP_ID")
    pusher_key: Optional[str] = Field(default=None, alias="PUSHER_KEY")
    pusher_secret: Optional[str] = Field(default=None, alias="PUSHER_SECRET")
    pusher_cluster: str = Field(default="eu", alias="PUSHER_CLUSTER")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, alias="JSON_LOGS")

    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        v = v.lower()
        if v not in ("sql", "memory"):
            raise ValueError("STORAGE_BACKEND must be 'sql' or 'memory'")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def realtime_enabled(self) -> bool:
        return bool(self.pusher_app_id and self.pusher_key and self.pusher_secret)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Note: Do not instantiate settings at import time to avoid failing
# on missing environment variables. Use `get_settings()` instead.
