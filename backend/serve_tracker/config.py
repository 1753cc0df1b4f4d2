"""
Serve Tracker Backend — Application Configuration
===================================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a default `settings` object.
Who:   Passed into `build_container()`, which hands the relevant values to
       each client and service. Services never read the module-level
       `settings` themselves; tests build their own `Settings(...)`.
When:  Loaded once at module import time; validated before app starts.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST override APPWRITE_API_KEY and
    APPWRITE_PROJECT_ID.

    Attributes are grouped by concern for readability.
    """

    # ── Remote API ────────────────────────────────────────────────────────
    # Hosted backend exposing documents, storage buckets, functions and
    # messaging under one REST endpoint.
    appwrite_endpoint: str = Field(default="https://nyc.cloud.appwrite.io/v1")
    appwrite_project_id: str = Field(default="serve-tracker")
    appwrite_api_key: str = Field(default="", description="Server API key")

    database_id: str = Field(default="serve_tracker")
    serve_attempts_collection_id: str = Field(default="serve_attempts")
    clients_collection_id: str = Field(default="clients")

    # ── Evidence Buckets ──────────────────────────────────────────────────
    evidence_bucket_id: str = Field(default="serve_evidence")
    thumbnail_bucket_id: str = Field(default="serve_thumbnails")

    # ── Mail ──────────────────────────────────────────────────────────────
    email_function_id: str = Field(default="sendEmail")
    messaging_provider_id: str = Field(default="smtp")
    messaging_topic_id: str = Field(default="serve-notifications")

    # Oversight mailbox copied on every notification
    business_email: str = Field(default="info@justlegalsolutions.org")

    # ── Media Preparation ─────────────────────────────────────────────────
    thumbnail_max_width: int = Field(default=400, ge=16, le=4096)
    thumbnail_max_height: int = Field(default=300, ge=16, le=4096)
    thumbnail_quality: float = Field(default=0.8, gt=0.0, le=1.0)
    thumbnail_format: str = Field(default="JPEG")

    # Largest width/height considered worth thumbnailing
    max_image_dimension: int = Field(default=4096, ge=1)

    @field_validator("thumbnail_format")
    @classmethod
    def validate_thumbnail_format(cls, v: str) -> str:
        """Ensures the thumbnail format is one Pillow can encode for the web."""
        valid_formats = {"JPEG", "PNG", "WEBP"}
        upper = v.upper()
        if upper == "JPG":
            upper = "JPEG"
        if upper not in valid_formats:
            raise ValueError(f"Invalid thumbnail_format '{v}'. Must be one of: {valid_formats}")
        return upper

    # ── Local Cache ───────────────────────────────────────────────────────
    # What: SQLAlchemy URL of the local durable key-value cache
    cache_database_url: str = Field(default="sqlite+aiosqlite:///./serve_tracker_cache.db")
    cache_namespace: str = Field(default="serve-tracker-serves")
    pending_namespace: str = Field(default="serve-tracker-pending")

    # Above this serialized size the reconciler drops legacy inline images
    cache_size_limit_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)

    # Number of most recent remote records mirrored into the read cache
    sync_limit: int = Field(default=100, ge=1, le=5000)

    # Seconds between scheduled reconcile runs; 0 disables the schedule
    sync_interval_seconds: float = Field(default=300, ge=0)

    # ── Attachment Download Retry ─────────────────────────────────────────
    download_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_min_wait: float = Field(default=1, ge=0, le=30)
    retry_max_wait: float = Field(default=10, ge=0, le=120)

    # Passed to httpx; the pipeline itself never times out a stage
    http_timeout: float = Field(default=30.0, gt=0, le=600)

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def public_file_url(self, bucket_id: str, file_id: str) -> str:
        """
        What:  Public view URL of a stored object.
        How:   Built only from endpoint, bucket, object id and project id, so
               the object id can always be recovered from the URL again.
        """
        return (
            f"{self.appwrite_endpoint.rstrip('/')}/storage/buckets/{bucket_id}"
            f"/files/{file_id}/view?project={self.appwrite_project_id}"
        )

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Checks each required field and raises ValueError with guidance.
        """
        errors = []
        if not self.appwrite_api_key:
            errors.append("APPWRITE_API_KEY is not set. Create a server key in the project console.")
        if not self.appwrite_project_id:
            errors.append("APPWRITE_PROJECT_ID is not set.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Default instance used by the application factory
settings = Settings()
