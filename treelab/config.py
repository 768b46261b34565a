import os
from pathlib import Path
from typing import List
from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv

# load .env file automatically
load_dotenv()

MIN_SESSION_SECRET_LENGTH = 32
ENCRYPTION_KEY_LENGTH = 32


class ConfigError(RuntimeError):
    """Raised at startup when a required setting is missing or unsafe."""


class Settings(BaseModel):
    """Process-wide configuration. Built once at startup, read-only afterwards."""
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///./treelab.db"
    data_dir: Path
    session_secret: str
    encryption_key: str
    session_max_age_seconds: int = 7 * 24 * 60 * 60
    cookie_secure: bool = True
    cors_origins: List[str] = []
    log_level: str = "INFO"

    @property
    def users_dir(self) -> Path:
        return self.data_dir / "users"


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} is not set in environment variables.")
    return value


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def cors_origins_from_env() -> List[str]:
    origins = os.getenv("CORS_ORIGINS", "http://localhost:9002,http://127.0.0.1:9002")
    return [o.strip() for o in origins.split(",") if o.strip()]


def validate_settings(settings: Settings) -> Settings:
    if len(settings.session_secret) < MIN_SESSION_SECRET_LENGTH:
        raise ConfigError(f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters.")
    if len(settings.encryption_key.encode("utf-8")) != ENCRYPTION_KEY_LENGTH:
        raise ConfigError(f"ENCRYPTION_KEY must be a {ENCRYPTION_KEY_LENGTH}-byte string.")
    if settings.session_max_age_seconds <= 0:
        raise ConfigError("SESSION_MAX_AGE_SECONDS must be positive.")
    return settings


def load_settings() -> Settings:
    """Read settings from the environment, failing fast on anything missing."""
    settings = Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./treelab.db"),
        data_dir=Path(_require("DATA_DIR")).resolve(),
        session_secret=_require("SESSION_SECRET"),
        encryption_key=_require("ENCRYPTION_KEY"),
        session_max_age_seconds=int(os.getenv("SESSION_MAX_AGE_SECONDS", str(7 * 24 * 60 * 60))),
        cookie_secure=_as_bool(os.getenv("COOKIE_SECURE", "true")),
        cors_origins=cors_origins_from_env(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    return validate_settings(settings)
