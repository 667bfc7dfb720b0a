import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/replifast"
    # TLS to Postgres. Verification can only be turned off explicitly, for proxies with self-signed certs
    database_ssl: bool = False
    database_ssl_verify: bool = True

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql:// and asyncpg needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values
    secret_key: str = "change-me-in-production"
    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    cron_secret: str = ""
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    app_url: str = "http://localhost:3000"
    encryption_key: str = ""

    # Google Business Profile OAuth client (platform credentials used for refresh)
    google_client_id: str = ""
    google_client_secret: str = ""

    # Reply generation
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    default_llm_id: str = ""  # "provider:model", empty = openai + openai_model
    automation_template_fallback: bool = False

    # Resend (email notifications)
    resend_api_key: str = ""
    from_email: str = ""

    # Automation pipeline
    automation_batch_cap: int = 50
    automation_error_log_limit: int = 10
    automation_lease_seconds: int = 600
    tenant_timeout_seconds: float = 300.0
    scheduled_review_window_hours: int = 24
    slot_error_rate_threshold: float = 0.5

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "SECRET_KEY must be set to a secure value in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            if not self.cron_secret:
                raise ValueError("CRON_SECRET must be set in production.")
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        if self.automation_batch_cap < 1:
            raise ValueError("AUTOMATION_BATCH_CAP must be at least 1.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
