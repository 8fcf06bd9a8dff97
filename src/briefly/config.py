"""Configuration loading for Briefly."""

import re
from functools import lru_cache

from croniter import croniter
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from briefly.utils.secrets import get_secret_store

# Simple email regex - not exhaustive but catches obvious errors
EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Accepts "Name <addr@host>" as well as a bare address
SENDER_REGEX = re.compile(r"^(?:[^<>]*<)?[^@\s<>]+@[^@\s<>]+\.[^@\s<>]+>?$")

MAX_ARTICLES_PER_TOPIC = 5
MAX_ARTICLES_PER_BRIEFING = 20
ARTICLE_RETENTION_DAYS = 30
BRIEFING_RETENTION_DAYS = 90


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="BRIEFLY_")

    # Storage
    database_url: str = Field(
        default="sqlite:///briefly.db", description="SQLAlchemy database URL"
    )

    # GCP / Gemini settings
    gcp_project_id: str | None = Field(default=None, description="Google Cloud project ID")
    gcp_region: str = Field(default="europe-west1", description="Google Cloud region")
    gemini_model: str = Field(default="gemini-2.0-flash-001", description="Gemini model name")

    # Email settings
    smtp_host: str = Field(default="smtp.gmail.com", description="SMTP server host")
    smtp_port: int = Field(default=465, description="SMTP server port")
    smtp_user: str | None = Field(default=None, description="SMTP login")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_from: str = Field(
        default="Briefly <briefings@briefly.app>", description="Sender of briefing emails"
    )
    app_url: str = Field(default="http://localhost:3000", description="Public app URL")

    # Chat webhook settings
    chat_webhook_url: str | None = Field(default=None, description="Chat webhook URL")
    chat_group_by_topic: bool = Field(
        default=False, description="Group chat posts by topic"
    )

    # Pipeline settings
    fetch_full_text: bool = Field(
        default=True, description="Fetch full page text before summarizing"
    )
    ingestion_cron: str = Field(default="0 */2 * * *", description="Feed fetch schedule")
    compilation_cron: str = Field(default="0 6 * * *", description="Briefing compile schedule")
    maintenance_cron: str = Field(default="0 3 * * 0", description="Cleanup schedule")
    worker_concurrency: int = Field(default=1, ge=1, description="Workers per queue")
    job_max_attempts: int = Field(default=1, ge=1, description="Deliveries per job")
    scheduler_enabled: bool = Field(default=True, description="Run cron producers")

    # Application settings
    log_level: str = Field(default="INFO", description="Logging level")
    dry_run: bool = Field(default=False, description="Render briefings without sending email")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate the database URL is not empty."""
        if not v or not v.strip():
            raise ValueError(
                "BRIEFLY_DATABASE_URL is required. "
                "Set it to a SQLAlchemy database URL."
            )
        return v.strip()

    @field_validator("smtp_from")
    @classmethod
    def validate_smtp_from(cls, v: str) -> str:
        """Validate sender address format."""
        v = v.strip()
        if not SENDER_REGEX.match(v):
            raise ValueError(f"BRIEFLY_SMTP_FROM '{v}' is not a valid sender address.")
        return v

    @field_validator("chat_webhook_url")
    @classmethod
    def validate_chat_webhook_url(cls, v: str | None) -> str | None:
        """Treat a blank webhook URL as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("ingestion_cron", "compilation_cron", "maintenance_cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Validate cron expressions up front rather than at first tick."""
        if not croniter.is_valid(v):
            raise ValueError(f"'{v}' is not a valid cron expression.")
        return v


class SecretsConfig:
    """Credentials resolved from settings, falling back to Secret Manager.

    Environment values win. Secret Manager is only consulted when a GCP
    project is configured, and a secret that is not provisioned there stays unset.
    """

    SMTP_PASSWORD_SECRET = "smtp-password"
    CHAT_WEBHOOK_SECRET = "chat-webhook-url"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _lookup(self, secret_id: str) -> str | None:
        if not self._settings.gcp_project_id:
            return None
        return get_secret_store(self._settings.gcp_project_id).lookup(secret_id)

    @property
    def smtp_password(self) -> str | None:
        return self._settings.smtp_password or self._lookup(self.SMTP_PASSWORD_SECRET)

    @property
    def chat_webhook_url(self) -> str | None:
        return self._settings.chat_webhook_url or self._lookup(self.CHAT_WEBHOOK_SECRET)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def get_secrets(settings: Settings | None = None) -> SecretsConfig:
    """Get secrets configuration.

    Args:
        settings: Settings to resolve against. If not provided, uses cached settings.

    Returns:
        SecretsConfig instance for accessing secrets.
    """
    return SecretsConfig(settings or get_settings())
