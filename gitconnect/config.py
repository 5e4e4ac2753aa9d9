"""
Runtime configuration for the GitConnect backend.

All values come from the process environment; ``run_server.py`` loads a
``.env`` file first so local development works without exporting anything.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

DEFAULT_DATABASE_URL = "sqlite:///./gitconnect.db"
DEFAULT_GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_USER_AGENT = "GitConnect Backend"
GITHUB_ACCEPT = "application/vnd.github+json"
DEFAULT_OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_JUDGMENT_MODEL = "google/gemini-2.0-flash-001"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str) -> Optional[float]:
    raw = _env(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    jwt_secret: Optional[str] = None
    session_ttl_days: int = 7

    # GitHub OAuth / GitHub App
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    github_redirect_uri: Optional[str] = None
    github_app_id: Optional[str] = None
    github_app_private_key: Optional[str] = None
    github_app_private_key_path: Optional[str] = None
    token_encryption_key: Optional[str] = None

    # Upstream executor
    github_api_base_url: str = DEFAULT_GITHUB_API_BASE_URL
    github_max_retries: int = 3
    github_retry_deadline_seconds: Optional[float] = None

    # Judgment model
    openrouter_api_key: Optional[str] = None
    openrouter_api_url: str = DEFAULT_OPENROUTER_API_URL
    judgment_model: str = DEFAULT_JUDGMENT_MODEL

    allow_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _env("ALLOW_ORIGINS", "http://localhost:3000")
        return cls(
            database_url=_env("DATABASE_URL", DEFAULT_DATABASE_URL),
            jwt_secret=_env("JWT_SECRET"),
            session_ttl_days=_env_int("SESSION_TTL_DAYS", 7),
            github_client_id=_env("GITHUB_CLIENT_ID"),
            github_client_secret=_env("GITHUB_CLIENT_SECRET"),
            github_redirect_uri=_env("GITHUB_REDIRECT_URI"),
            github_app_id=_env("GITHUB_APP_ID"),
            github_app_private_key=_env("GITHUB_APP_PRIVATE_KEY"),
            github_app_private_key_path=_env("GITHUB_APP_PRIVATE_KEY_PATH"),
            token_encryption_key=_env("TOKEN_ENCRYPTION_KEY"),
            github_api_base_url=_env("GITHUB_API_BASE_URL", DEFAULT_GITHUB_API_BASE_URL),
            github_max_retries=_env_int("GITHUB_MAX_RETRIES", 3),
            github_retry_deadline_seconds=_env_float("GITHUB_RETRY_DEADLINE_SECONDS"),
            openrouter_api_key=_env("OPENROUTER_API_KEY"),
            openrouter_api_url=_env("OPENROUTER_API_URL", DEFAULT_OPENROUTER_API_URL),
            judgment_model=_env("JUDGMENT_MODEL", DEFAULT_JUDGMENT_MODEL),
            allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def oauth_configured(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)

    @property
    def github_app_configured(self) -> bool:
        return bool(
            self.github_app_id
            and (self.github_app_private_key or self.github_app_private_key_path)
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings.from_env()
