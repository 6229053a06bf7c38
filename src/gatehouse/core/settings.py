"""Application settings and configuration.

This module defines all configuration options for the Gatehouse application.
Settings are loaded from environment variables with sensible defaults; every
duration is expressed in seconds.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The rule table, thresholds and durations are read once at startup.
    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Gatehouse", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./gatehouse.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Shared key-value backend; unset keeps all security state in-process
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # HTTP surface
    api_prefix: str = Field(default="/api", alias="API_PREFIX")
    public_site_url: str | None = Field(default=None, alias="PUBLIC_SITE_URL")
    max_body_bytes: int = Field(default=12 * 1024 * 1024, alias="MAX_BODY_BYTES")
    cors_origins: list[str] = Field(default=[], alias="ALLOWED_ORIGINS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["Content-Type", "Authorization"],
        alias="CORS_ALLOW_HEADERS",
    )

    # Admin sessions
    session_cookie_name: str = Field(default="admin_session", alias="ADMIN_SESSION_COOKIE")
    session_cookie_secure: bool = Field(default=False, alias="SESSION_COOKIE_SECURE")
    session_ttl_seconds: int = Field(default=8 * 60 * 60, alias="ADMIN_SESSION_TTL_SECONDS")
    admin_username: str | None = Field(default=None, alias="ADMIN_USERNAME")
    admin_password_hash: str | None = Field(default=None, alias="ADMIN_PASSWORD_HASH")
    password_hash_rounds: int = Field(default=12, alias="PASSWORD_HASH_ROUNDS")

    # Sliding-window rate limits (requests per window)
    rate_limit_window_seconds: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_login_max: int = Field(default=10, alias="RATE_LIMIT_LOGIN_MAX")
    rate_limit_appeal_max: int = Field(default=30, alias="RATE_LIMIT_APPEAL_MAX")
    rate_limit_settings_max: int = Field(default=20, alias="RATE_LIMIT_SETTINGS_MAX")
    rate_limit_admin_write_max: int = Field(default=80, alias="RATE_LIMIT_ADMIN_WRITE_MAX")
    rate_limit_tracking_max: int = Field(default=240, alias="RATE_LIMIT_TRACKING_MAX")
    rate_limit_default_max: int = Field(default=140, alias="RATE_LIMIT_DEFAULT_MAX")

    # Violation escalation into temporary bans
    violation_window_seconds: float = Field(default=10 * 60, alias="VIOLATION_WINDOW_SECONDS")
    temp_block_duration_seconds: float = Field(
        default=20 * 60,
        alias="TEMP_BLOCK_DURATION_SECONDS",
    )
    rate_limit_block_threshold: int = Field(default=6, alias="RATE_LIMIT_BLOCK_THRESHOLD")
    malicious_input_block_threshold: int = Field(
        default=3,
        alias="MALICIOUS_INPUT_BLOCK_THRESHOLD",
    )

    # Payload scanning
    threat_sample_length: int = Field(default=220, alias="THREAT_SAMPLE_LENGTH")
    # Paths below the API prefix
    threat_exempt_paths: list[str] = Field(
        default=[
            "/track",
            "/upload",
            "/content",
            "/security/appeal",
            "/security/block-status",
        ],
        alias="THREAT_EXEMPT_PATHS",
    )

    # Geo enrichment
    geo_cache_ttl_seconds: float = Field(default=30 * 60, alias="GEO_CACHE_TTL_SECONDS")
    geo_cache_max_entries: int = Field(default=4096, alias="GEO_CACHE_MAX_ENTRIES")
    geo_provider_timeout_seconds: float = Field(
        default=4.5,
        alias="GEO_PROVIDER_TIMEOUT_SECONDS",
    )
    attack_geo_timeout_seconds: float = Field(default=1.5, alias="ATTACK_GEO_TIMEOUT_SECONDS")
    geo_providers: list[str] = Field(
        default=["ipapi.is", "ip-api", "ipwho.is"],
        alias="GEO_PROVIDERS",
    )

    # Appeals
    appeal_min_interval_seconds: float = Field(default=2 * 60, alias="APPEAL_MIN_INTERVAL_SECONDS")
    appeal_min_message_length: int = Field(default=10, alias="APPEAL_MIN_MESSAGE_LENGTH")
    appeal_max_message_length: int = Field(default=450, alias="APPEAL_MAX_MESSAGE_LENGTH")
    appeal_history_limit: int = Field(default=500, alias="APPEAL_HISTORY_LIMIT")

    # Login brute-force protection
    login_lock_window_seconds: float = Field(default=15 * 60, alias="LOGIN_LOCK_WINDOW_SECONDS")
    login_lock_duration_seconds: float = Field(
        default=15 * 60,
        alias="LOGIN_LOCK_DURATION_SECONDS",
    )
    login_lock_threshold: int = Field(default=5, alias="LOGIN_LOCK_THRESHOLD")
    login_backoff_step_seconds: float = Field(default=1.0, alias="LOGIN_BACKOFF_STEP_SECONDS")
    login_backoff_max_seconds: float = Field(default=10.0, alias="LOGIN_BACKOFF_MAX_SECONDS")

    # Audit notifications
    notification_limit: int = Field(default=500, alias="NOTIFICATION_LIMIT")

    # Background eviction of expired state
    sweep_interval_seconds: float = Field(default=60.0, alias="SWEEP_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def canonical_host(self) -> str | None:
        """Return the bare public host name, without scheme, port or ``www.``."""
        if not self.public_site_url:
            return None
        host = self.public_site_url.split("://", 1)[-1].split("/", 1)[0].split(":", 1)[0]
        host = host.strip().lower()
        if host.startswith("www."):
            host = host[4:]
        return host or None

    @property
    def rate_limits(self) -> dict[str, int]:
        """Return the per-rule request ceilings keyed by rule name."""
        return {
            "login": self.rate_limit_login_max,
            "appeal": self.rate_limit_appeal_max,
            "settings": self.rate_limit_settings_max,
            "admin_write": self.rate_limit_admin_write_max,
            "tracking": self.rate_limit_tracking_max,
            "default": self.rate_limit_default_max,
        }

    @property
    def threat_exempt_prefixes(self) -> list[str]:
        """Return the scanner exemptions mounted under ``api_prefix``."""
        prefix = self.api_prefix.rstrip("/")
        return [f"{prefix}/{path.lstrip('/')}" for path in self.threat_exempt_paths]


settings = Settings()
