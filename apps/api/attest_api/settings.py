"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "attest"
    postgres_password: str = "attest_dev_password"
    postgres_db: str = "attest"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Redis (Celery broker + workspace broadcast channel)
    redis_url: str = "redis://localhost:6379/0"

    # Artifact storage
    storage_provider: str = "local"  # local, s3
    artifact_root: str = "./data"
    minio_endpoint: str = "localhost:9000"
    minio_access_key: Optional[str] = None  # Required when storage_provider=s3
    minio_secret_key: Optional[str] = None  # Required when storage_provider=s3
    minio_bucket: str = "attest-artifacts"
    minio_use_ssl: bool = False

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Timeline
    timeline_default_limit: int = 50
    timeline_max_limit: int = 200
    timeline_candidate_window: int = 500

    # Verification / reconciliation
    verify_max_workers: int = 8
    artifact_read_timeout_seconds: float = 10.0
    compose_replay_limit: int = 50
    compose_replay_rerun: bool = False
    compose_provider_url: Optional[str] = None
    compose_provider_timeout_seconds: float = 60.0

    # Nightly orchestrator
    reports_dir: str = "./.reports"
    report_retention_days: int = 90
    nightly_subtask_timeout_seconds: int = 30 * 60

    # Notifications (only consumed by the nightly notification path)
    notify_enabled: bool = False
    notify_webhook_url: Optional[str] = None
    notify_webhook_secret: Optional[str] = None
    notify_slack_webhook_url: Optional[str] = None
    notify_timeout_seconds: int = 10
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_from_address: str = "noreply@attest.local"
    notify_email_to: list[str] = []

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.storage_provider not in ("local", "s3"):
            raise ValueError(
                f"STORAGE_PROVIDER={self.storage_provider} is not supported. Use local or s3."
            )
        if self.storage_provider == "s3" and (
            not self.minio_access_key or not self.minio_secret_key
        ):
            raise ValueError(
                "MINIO_ACCESS_KEY and MINIO_SECRET_KEY are required when STORAGE_PROVIDER=s3."
            )
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.storage_provider == "local" and self.artifact_root == "./data":
                raise ValueError(
                    "ARTIFACT_ROOT must be set explicitly in production. "
                    "Do not rely on the working-directory default."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
