"""Configuration management for StakeScope.

Loads the RPC endpoint, database URL and pipeline tuning from environment
variables using Pydantic. Secrets (API keys embedded in the RPC URL) belong
in .env, never in code.

Usage:
    from stakescope.config import settings

    print(settings.rpc_url)
    print(settings.batch_size)
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


class Settings(BaseSettings):
    """StakeScope configuration from environment variables.

    Loads from .env file automatically. Validates on instantiation.

    Attributes:
        rpc_url: Solana JSON-RPC endpoint (may embed an API key)
        database_url: SQLAlchemy URL for the relational store
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR)
        cache_backend: Response cache backend ('memory' or 'database')
        batch_size: Identifiers per batched RPC call
        max_retries: Attempts per chunk on rate-limit responses
        batch_delay: Pause between chunk calls (seconds)
        run_timeout: Wall-clock budget of one pipeline run (seconds)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # Endpoints
    rpc_url: str = Field(default=DEFAULT_RPC_URL, description="Solana JSON-RPC URL")
    database_url: str = Field(
        default="sqlite:///stakescope.db",
        description="SQLAlchemy database URL",
    )

    # System Settings
    log_level: str = Field(default="INFO", description="Logging level")
    archive_dir: str | None = Field(
        default=None,
        description="Directory for Parquet snapshot archive (None = disabled)",
    )

    # RPC client
    rpc_rate_limit: int = Field(default=5, ge=1, description="RPC requests/second")
    rpc_timeout: float = Field(default=30.0, gt=0, description="RPC request timeout (seconds)")

    # Response cache
    cache_backend: str = Field(default="memory", description="'memory' or 'database'")
    cache_ttl_short: int = Field(default=60, ge=1, description="TTL for fast-moving state")
    cache_ttl_medium: int = Field(default=300, ge=1, description="TTL for per-account data")
    cache_ttl_long: int = Field(default=3600, ge=1, description="TTL for slow aggregates")

    # Batch fetcher (conservative defaults)
    batch_size: int = Field(default=25, ge=1, le=100, description="Identifiers per chunk")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per rate-limited chunk")
    batch_delay: float = Field(default=2.0, ge=0, description="Delay between chunks (seconds)")
    backoff_base: float = Field(default=1.0, ge=0, description="Base backoff (seconds)")
    fetch_concurrency: int = Field(default=1, ge=1, le=16, description="Concurrent chunks")

    # Reconciliation
    sync_batch_size: int = Field(default=50, ge=1, le=100, description="Rows per upsert batch")

    # Pipeline
    run_timeout: float = Field(default=600.0, gt=0, description="Run budget (seconds)")
    recent_blocks: int = Field(default=10, ge=0, le=100, description="Blocks sampled per collect")
    performance_samples: int = Field(default=5, ge=1, le=720, description="Samples for TPS")

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Ensure the RPC URL is an http(s) URL."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url must be an http(s) URL, got '{v}'")
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        """Ensure cache backend is valid."""
        v_lower = v.lower()
        if v_lower not in {"memory", "database"}:
            raise ValueError(f"cache_backend must be 'memory' or 'database', got '{v}'")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got {v}")
        return v_upper


# Global settings instance, loaded once at import
settings = Settings()
