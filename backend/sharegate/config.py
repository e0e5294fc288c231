"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Backend settings from env."""

    model_config = SettingsConfigDict(env_prefix="SHAREGATE_", extra="ignore")

    # Database
    db_path: Path = Path("/data/sharegate.db")
    # Seconds a writer waits for SQLite's write lock before giving up
    db_busy_timeout_seconds: float = 15.0

    # JWT (owner identity; tokens are issued by the account service)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Links
    token_bytes: int = 16
    token_mint_attempts: int = 5
    bcrypt_rounds: int = 12

    # Analytics: writes slower than this are dropped (and logged)
    analytics_timeout_seconds: float = 2.0
    # HMAC key for viewer identity hashes; empty = use jwt_secret
    viewer_hash_key: str = ""

    # Rate limiting of the public read path (slowapi limit string)
    rate_limit_enabled: bool = True
    share_read_rate_limit: str = "30/minute"

    # CORS: set as comma-separated string in env (e.g. https://share.example.com)
    # so pydantic-settings does not try to JSON-decode it
    cors_origins: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or [
            "http://localhost:3000"
        ]

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
