"""
Runtime Environment Validation Module

This module validates all required environment variables at application startup.
If validation fails, the application will refuse to start (hard fail).

This prevents runtime errors from missing or misconfigured environment variables.
"""

import os
import sys
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProductionSettings(BaseSettings):
    """
    Strict validation schema for production environment variables.

    All required fields MUST be present and valid, or the application will not start.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",  # Fail on unknown keys in .env
    )

    # ========================================================================
    # CRITICAL: Database Configuration
    # ========================================================================
    database_url: str  # REQUIRED: PostgreSQL connection string

    # ========================================================================
    # CRITICAL: Firebase Authentication
    # ========================================================================
    firebase_project_id: str  # REQUIRED: Firebase project ID
    google_application_credentials: Optional[str] = None  # Path to service account JSON

    # ========================================================================
    # Application Configuration
    # ========================================================================
    app_name: str = "Plumbline Work Orders"
    debug: bool = False
    api_v1_prefix: str = "/v1"
    log_level: str = "INFO"
    app_base_url: str = "http://localhost:3000"

    # ========================================================================
    # CRITICAL: CORS Configuration
    # ========================================================================
    allowed_origins: str  # REQUIRED: Comma-separated list of allowed origins

    # ========================================================================
    # Tokens
    # ========================================================================
    invitation_ttl_days: int = 7
    token_bytes: int = 32

    # ========================================================================
    # Optional: Notification delivery (Resend)
    # ========================================================================
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    resend_from: Optional[str] = None
    platform_notification_emails: str = ""
    notification_max_attempts: int = 3
    notification_backoff_seconds: float = 0.5
    notification_timeout_seconds: float = 10.0


def validate_environment() -> ProductionSettings:
    """
    Validate all required environment variables at startup.

    This function MUST be called before the FastAPI app starts.
    If validation fails, the application will exit with code 1.

    Returns:
        ProductionSettings: Validated settings object

    Raises:
        SystemExit: If validation fails (exit code 1)
    """

    try:
        settings = ProductionSettings()

        # 1. CORS: Ensure wildcard is not used in production
        if not settings.debug:
            origins = [o.strip() for o in settings.allowed_origins.split(",")]
            if "*" in origins:
                print(
                    "❌ FATAL: Wildcard CORS origin (*) detected in production mode.",
                    file=sys.stderr
                )
                print(
                    "   Set ALLOWED_ORIGINS to specific domains (comma-separated).",
                    file=sys.stderr
                )
                sys.exit(1)

        # 2. Firebase: Validate credentials path exists (if provided)
        if settings.google_application_credentials:
            if not os.path.exists(settings.google_application_credentials):
                print(
                    f"❌ FATAL: Firebase credentials file not found: {settings.google_application_credentials}",
                    file=sys.stderr
                )
                sys.exit(1)

        # 3. Database URL: PostgreSQL outside debug mode
        if not settings.debug and not settings.database_url.startswith("postgresql"):
            print(
                "❌ FATAL: DATABASE_URL must be a PostgreSQL connection string (postgresql:// or postgresql+asyncpg://)",
                file=sys.stderr
            )
            sys.exit(1)

        # 4. Tokens: TTL and entropy bounds
        if settings.invitation_ttl_days < 1:
            print("❌ FATAL: INVITATION_TTL_DAYS must be at least 1", file=sys.stderr)
            sys.exit(1)
        if settings.token_bytes < 16:
            print("❌ FATAL: TOKEN_BYTES must be at least 16", file=sys.stderr)
            sys.exit(1)

        # 5. Notifications: delivery falls back to logging without a key
        if not settings.resend_api_key and not settings.debug:
            print(
                "⚠️  RESEND_API_KEY not set: notifications will be logged, not delivered",
                file=sys.stderr
            )

        print("✅ Environment validation passed")
        print(f"   App: {settings.app_name}")
        print(f"   Debug: {settings.debug}")
        print(f"   CORS Origins: {settings.allowed_origins}")
        print(f"   Invitation TTL: {settings.invitation_ttl_days} days")

        return settings

    except ValidationError as e:
        print("❌ FATAL: Environment validation failed", file=sys.stderr)
        print("\nMissing or invalid environment variables:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"   • {field}: {msg}", file=sys.stderr)

        print("\nThe application cannot start with invalid configuration.", file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    # Allow running this module directly to test validation
    validate_environment()
    print("\n✅ All environment variables are valid!")
