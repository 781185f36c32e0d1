"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Payment Gateway Configuration
    gateway_base_url: str = Field(..., description="Payment gateway base URL")
    gateway_contribute_path: str = Field(
        default="/kitty/api/contribute/", description="Gateway contribution endpoint path"
    )
    gateway_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Gateway request timeout (seconds)"
    )
    gateway_user_agent: str = Field(default="VotePay/1.0", description="Outbound User-Agent")
    gateway_callback_url: Optional[str] = Field(
        default=None,
        description="Status callback URL sent to the gateway (derived from each request when unset)",
    )
    gateway_channel_codes: str = Field(
        default="",
        description="Accepted channel codes (comma-separated, empty accepts all known codes)",
    )
    circuit_breaker_failure_threshold: int = Field(
        default=5, description="Transport failures before the gateway circuit opens"
    )
    circuit_breaker_timeout_seconds: float = Field(
        default=60.0, description="Seconds before an open circuit is probed again"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")
    store_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for a single store operation (seconds)"
    )

    # Application Configuration
    app_name: str = Field(default="votepay", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    # Pricing
    minimum_amount: Decimal = Field(default=Decimal("1"), gt=0, description="Minimum payment amount")
    price_per_vote: Decimal = Field(default=Decimal("10"), gt=0, description="Amount per vote")

    # Rate Limiting
    api_rate_limit: int = Field(default=100, description="General API requests per window")
    api_rate_window_seconds: float = Field(default=60.0, description="General API window (seconds)")
    api_rate_burst: int = Field(default=50, description="General API burst allowance")
    vote_rate_limit: int = Field(default=300, description="Vote submissions per window")
    vote_rate_window_seconds: float = Field(default=60.0, description="Vote window (seconds)")
    vote_rate_burst: int = Field(default=150, description="Vote burst allowance")
    rate_limit_burst_extension_seconds: float = Field(
        default=10.0, description="Window extension applied when burst allowance is consumed"
    )
    rate_limit_cache_ttl_seconds: float = Field(
        default=1.0, description="TTL for cached rate-limit rejections (seconds)"
    )
    cache_sweep_interval_seconds: float = Field(
        default=300.0, description="Interval between expired cache entry sweeps"
    )
    candidates_cache_ttl_seconds: float = Field(
        default=5.0, description="TTL for the cached candidate tally listing (0 disables)"
    )

    # Vote Crediting
    vote_credit_workers: int = Field(default=2, ge=1, description="Vote credit consumer tasks")
    vote_credit_queue_size: int = Field(default=10000, description="Pending vote credit capacity")
    vote_credit_max_attempts: int = Field(default=3, ge=1, description="Attempts per vote credit")
    shutdown_drain_timeout_seconds: float = Field(
        default=10.0, description="Time allowed to drain pending vote credits on shutdown"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("gateway_base_url")
    @classmethod
    def validate_gateway_base_url(cls, v: str) -> str:
        """Require an http(s) URL without a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("gateway_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("gateway_channel_codes")
    @classmethod
    def validate_channel_codes(cls, v: str) -> str:
        """Ensure every configured channel code is an integer."""
        for part in v.split(","):
            part = part.strip()
            if part and not part.isdigit():
                raise ValueError(f"Invalid channel code in gateway_channel_codes: {part!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def get_channel_codes_list(self) -> List[int]:
        """Parse the channel-code allow-list."""
        return [int(part) for part in self.gateway_channel_codes.split(",") if part.strip()]

    @property
    def gateway_contribute_url(self) -> str:
        """Full URL of the gateway contribution endpoint."""
        return f"{self.gateway_base_url}{self.gateway_contribute_path}"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Only process entry points call this; services receive settings explicitly.
    """
    return Settings()
