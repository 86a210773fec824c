"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Matching thresholds live here so they can be tuned per deployment.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # STORAGE
    # ===================
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|supabase)$",
        description="Which ImportStore adapter to use"
    )
    supabase_url: Optional[str] = Field(
        None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        None,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # UPLOAD LIMITS
    # ===================
    import_max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Reject uploads larger than this"
    )
    import_preview_row_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Annotated rows returned by preview"
    )
    import_header_scan_rows: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Rows inspected when looking for the header row"
    )

    # ===================
    # IMPORT SESSIONS
    # ===================
    import_session_ttl_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Lifetime of a staged import between preview and execute"
    )
    import_session_sweep_interval_seconds: int = Field(
        default=300,
        ge=5,
        le=3600,
        description="How often expired sessions are purged"
    )

    # ===================
    # MATCHING POLICY
    # ===================
    vocabulary_fuzzy_threshold: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Minimum similarity for a fuzzy vocabulary match"
    )
    vocabulary_ambiguity_margin: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Lead the best fuzzy candidate needs over the runner-up"
    )
    duplicate_match_threshold: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Minimum composite score to call a row a duplicate"
    )
    duplicate_address_min_similarity: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Minimum address similarity on its own; below it the street differs"
    )
    column_rename_similarity: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Header similarity above which a column counts as renamed"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def import_max_file_size_bytes(self) -> int:
        return self.import_max_file_size_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
