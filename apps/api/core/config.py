"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the Celery worker,
and the on-device set sync client.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="readiness_engine")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (e.g. "sqlite://" for tests). Takes precedence over the parts above.
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)
    EXTERNAL_API_RETRY_ATTEMPTS: int = Field(default=3)
    EXTERNAL_API_RETRY_BACKOFF_S: float = Field(default=0.5)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Daily readiness / load / adjustment pipeline
    DAILY_PIPELINE_HOUR_UTC: int = Field(default=4, ge=0, le=23)

    # Offline set sync (device side)
    # Base URL of the API that accepts logged sets (POST /v1/sets).
    SET_LOGGING_BASE_URL: str = Field(default="http://localhost:8000")
    # Reachability probe used by the polling network monitor.
    SYNC_HEALTH_URL: str = Field(default="http://localhost:8000/health")
    SYNC_POLL_INTERVAL_S: float = Field(default=30.0, gt=0)
    SYNC_PROBE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    # Max sessions uploaded in parallel during one flush. Sets within a session are always sequential.
    SYNC_MAX_CONCURRENCY: int = Field(default=2, ge=1, le=16)
    SYNC_LOCAL_DB_PATH: str = Field(default="pending_sets.db")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.1)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
