"""
core/config.py -- Autozonex settings, read from the environment and .env.

Every tunable lives on Settings; field names map to upper-case environment
variables (database_url -> DATABASE_URL). Call get_settings() rather than
reading os.environ. The instance is built once and cached, so tests must set
their environment before the first call (see tests/conftest.py).

SECRET_KEY policy:
  DEBUG=true   -- a missing key is replaced by a random one and a warning is
                  logged. Tokens then die with the process.
  otherwise    -- a missing key stops startup.
  always       -- keys shorter than 32 characters are refused.

Layer rule: core/ may not import from api/, web/, auth/ or market/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("autozonex.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'autozonex.db'}"
_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Runtime configuration. Every field has a default except SECRET_KEY outside debug."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # HTTP
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # Sessions: the JWT and its cookie share one lifetime.
    secure_cookies: bool = False
    token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # Per-IP limits, slowapi syntax.
    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # One-time passwords
    otp_bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    otp_expire_seconds: int = Field(default=5 * 60, gt=0)
    otp_purge_interval_seconds: int = Field(default=10 * 60, gt=0)

    # Outbound mail. Delivery is off until both SMTP_HOST and SMTP_SENDER are set.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = ""
    smtp_use_tls: bool = True

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "Set it in the environment or in .env."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG: using a generated SECRET_KEY; tokens will not survive a restart.")
        if len(self.secret_key) < _MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_SECRET_LENGTH} characters.")
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_sender)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first use.

    Tests that need different values call get_settings.cache_clear() or use
    model_copy(update=...) on the returned instance.
    """
    return Settings()
