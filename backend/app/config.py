import json
import os
import threading
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

DEFAULT_MIGRATION_TEMP_DIR = str(
    Path(__file__).resolve().parent.parent / "uploads" / "migrations"
)
STATE_BACKENDS = frozenset({"memory", "redis"})
TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})

# Fields read from the upper-cased env var of the same name, each > 0
POSITIVE_INT_FIELDS = (
    "db_pool_size",
    "db_pool_recycle",
    "role_hierarchy_cache_ttl_seconds",
    "migration_upload_max_attempts",
    "migration_upload_window_seconds",
    "migration_cooldown_seconds",
    "migration_sweep_interval_seconds",
    "migration_history_limit",
    "migration_file_size_limit",
)


def _required(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} environment variable must be set")
    return value


def _positive_int(name: str, default: int) -> int:
    value = int(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in TRUE_VALUES:
        return True
    if raw in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean value")


def parse_allowed_origins(raw: str) -> list[str]:
    """Parse ``ALLOWED_ORIGINS`` given as CSV or as a JSON array."""
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(values, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
    else:
        values = raw.split(",")

    origins = [value.strip() for value in values if isinstance(value, str) and value.strip()]
    if not origins:
        raise ValueError("ALLOWED_ORIGINS must contain at least one origin")
    if "*" in origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )
    for origin in origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("ALLOWED_ORIGINS must contain valid http/https origins with host")
    return origins


def _database_url() -> str:
    database_url = _required("DATABASE_URL")
    parsed = urlparse(database_url)
    if parsed.scheme != "postgresql+asyncpg":
        raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
    if not parsed.hostname:
        raise ValueError("DATABASE_URL must include hostname")
    return database_url


class Settings(BaseModel):
    app_name: str = Field(default="modl Panel Backend")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    algorithm: str = Field(default="HS256")
    state_backend: str = Field(default="memory")
    role_hierarchy_cache_ttl_seconds: int = Field(default=300)
    migration_upload_max_attempts: int = Field(default=3)
    migration_upload_window_seconds: int = Field(default=3600)
    migration_cooldown_seconds: int = Field(default=86400)
    migration_sweep_interval_seconds: int = Field(default=300)
    migration_history_limit: int = Field(default=10)
    migration_file_size_limit: int = Field(default=5 * 1024 * 1024 * 1024)
    migration_temp_dir: str = Field(default=DEFAULT_MIGRATION_TEMP_DIR)

    @classmethod
    def _default(cls, field: str):
        return cls.model_fields[field].default

    @classmethod
    def from_env(cls) -> "Settings":
        secret_key = _required("SECRET_KEY")
        allowed_origins = parse_allowed_origins(_required("ALLOWED_ORIGINS"))
        database_url = _database_url()

        db_max_overflow = int(os.getenv("DB_MAX_OVERFLOW", cls._default("db_max_overflow")))
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        redis_url = os.getenv("REDIS_URL", cls._default("redis_url")).strip()
        state_backend = os.getenv("STATE_BACKEND", cls._default("state_backend")).strip().lower()
        if state_backend not in STATE_BACKENDS:
            raise ValueError(
                f"STATE_BACKEND must be one of: {', '.join(sorted(STATE_BACKENDS))}"
            )
        if state_backend == "redis" and not redis_url:
            raise ValueError("REDIS_URL must be set when STATE_BACKEND=redis")

        migration_temp_dir = os.getenv(
            "MIGRATION_TEMP_DIR", cls._default("migration_temp_dir")
        ).strip()
        if not migration_temp_dir:
            raise ValueError("MIGRATION_TEMP_DIR must not be empty")

        limits = {
            field: _positive_int(field.upper(), cls._default(field))
            for field in POSITIVE_INT_FIELDS
        }
        return cls(
            app_name=os.getenv("APP_NAME", cls._default("app_name")),
            debug=_bool("DEBUG", False),
            database_url=database_url,
            redis_url=redis_url,
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            algorithm=os.getenv("ALGORITHM", cls._default("algorithm")),
            db_max_overflow=db_max_overflow,
            db_pool_pre_ping=_bool("DB_POOL_PRE_PING", cls._default("db_pool_pre_ping")),
            state_backend=state_backend,
            migration_temp_dir=migration_temp_dir,
            **limits,
        )


# Settings are validated on first access, not at import time
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    This allows the module to be imported without environment validation.
    Uses double-checked locking so concurrent first accesses build one instance.

    Returns:
        Settings instance

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
