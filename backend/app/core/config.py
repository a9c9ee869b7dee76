"""Application configuration using Pydantic Settings."""

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

    # App
    app_name: str = "Plumbline Work Orders"
    debug: bool = False
    api_v1_prefix: str = "/v1"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000"
    app_base_url: str = "http://localhost:3000"

    # Database
    database_url: str

    # Firebase Auth
    firebase_project_id: str
    google_application_credentials: Optional[str] = None

    # Tokens
    invitation_ttl_days: int = 7
    token_bytes: int = 32

    # Notifications (Resend)
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    resend_from: str = "Plumbline <notifications@plumbline.app>"
    platform_notification_emails: str = ""
    notification_max_attempts: int = 3
    notification_backoff_seconds: float = 0.5
    notification_timeout_seconds: float = 10.0

    @property
    def origins(self) -> list[str]:
        """Parsed CORS origins."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def platform_inbox(self) -> list[str]:
        """Dispatch inbox addresses that receive platform notifications."""
        return [
            e.strip().lower()
            for e in self.platform_notification_emails.split(",")
            if e.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
