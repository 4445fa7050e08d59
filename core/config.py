"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for VulnWatch happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. sync_history_limit -> SYNC_HISTORY_LIMIT).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning, production mode refuses to start without one.

The module also owns the timestamp helpers. Every persisted timestamp is an
ISO 8601 UTC string produced by to_iso(), so lexical order equals time order.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
inventory/, or sync/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("vulnwatch.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    token_expire_seconds: int = 3600
    # JSON list in the environment, e.g. ALLOWED_HOSTS='["vulnwatch.example.org"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///vulnwatch_inventory.db"
    auth_database_url: str = "sqlite:///vulnwatch_auth.db"

    # ------------------------------------------------------------------
    # Sync engine
    # ------------------------------------------------------------------

    sync_history_limit: int = Field(default=5, ge=1)
    resolver_workers: int = Field(default=1, ge=1)
    min_sync_interval_seconds: int = 60

    # In-process scheduler loop. Off by default: production runs
    # `python main.py sync` from cron instead.
    sync_scheduler_enabled: bool = False
    sync_poll_seconds: int = 60

    partner_timeout_seconds: float = 30.0
    partner_page_size: int = 500
    partner_max_pages: int = 20

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    default_page_size: int = 10
    max_page_size: int = 100

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters (JWT and API key
        HMAC signing both rely on key entropy).
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Render a datetime as a fixed-width ISO 8601 UTC string.

    Naive datetimes are treated as UTC. Microseconds are always emitted so
    two stamps of the same second still compare correctly as strings.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string, assuming UTC when no offset is present."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
