"""
Configuration management for JobWatch.

Uses pydantic-settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # App
    APP_NAME: str = "JobWatch"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Remote endpoints
    ANALYZE_URL: str = "http://localhost:8080/analyzeVideo"
    UPLOAD_URL: str = "http://localhost:8080/uploadToYoutube"

    # Timeouts (seconds)
    SUBMIT_REQUEST_TIMEOUT_SECONDS: float = 600.0  # 10 minutes for large uploads
    UPLOAD_TIMER_SECONDS: float = 600.0
    ANALYSIS_TIMER_SECONDS: float = 900.0  # 15 minutes
    SECONDARY_REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Gate
    QUALIFY_THRESHOLD: float = 10.0

    # Change notifier
    JOBS_COLLECTION: str = "analyses"
    INSTITUTION_ID: str = "udl"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Security
    JWT_SECRET_KEY: str = "change-me-in-production-use-strong-secret"
    JWT_ALGORITHM: str = "HS256"
    AUTH_TOKEN: Optional[str] = None

    # Error tracking
    SENTRY_DSN: Optional[str] = None


# Global settings instance
settings = Settings()
