import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_positive_int(name: str, raw: str | int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


class Settings(BaseModel):
    app_name: str = Field(default="Authz Engine")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    permission_cache_ttl_seconds: int = Field(default=900)
    admin_role_cache_ttl_seconds: int = Field(default=300)
    expiry_sweep_interval_seconds: int = Field(default=3600)
    expiry_sweep_enabled: bool = Field(default=True)

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        redis_url = os.getenv("REDIS_URL", cls.model_fields["redis_url"].default).strip()
        if urlparse(redis_url).scheme not in {"redis", "rediss"}:
            raise ValueError("REDIS_URL must start with 'redis://' or 'rediss://'")

        db_pool_size = _parse_positive_int(
            "DB_POOL_SIZE", os.getenv("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default)
        )

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = _parse_positive_int(
            "DB_POOL_RECYCLE",
            os.getenv("DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default),
        )

        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)),
        )

        permission_cache_ttl = _parse_positive_int(
            "PERMISSION_CACHE_TTL_SECONDS",
            os.getenv(
                "PERMISSION_CACHE_TTL_SECONDS",
                cls.model_fields["permission_cache_ttl_seconds"].default,
            ),
        )
        admin_role_cache_ttl = _parse_positive_int(
            "ADMIN_ROLE_CACHE_TTL_SECONDS",
            os.getenv(
                "ADMIN_ROLE_CACHE_TTL_SECONDS",
                cls.model_fields["admin_role_cache_ttl_seconds"].default,
            ),
        )
        # The admin role view feeds the permission entry, so it must not outlive it
        if admin_role_cache_ttl > permission_cache_ttl:
            raise ValueError(
                "ADMIN_ROLE_CACHE_TTL_SECONDS must not exceed PERMISSION_CACHE_TTL_SECONDS"
            )

        expiry_sweep_interval = _parse_positive_int(
            "EXPIRY_SWEEP_INTERVAL_SECONDS",
            os.getenv(
                "EXPIRY_SWEEP_INTERVAL_SECONDS",
                cls.model_fields["expiry_sweep_interval_seconds"].default,
            ),
        )
        expiry_sweep_enabled = _parse_bool(
            "EXPIRY_SWEEP_ENABLED",
            os.getenv(
                "EXPIRY_SWEEP_ENABLED", str(cls.model_fields["expiry_sweep_enabled"].default)
            ),
        )

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            redis_url=redis_url,
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            permission_cache_ttl_seconds=permission_cache_ttl,
            admin_role_cache_ttl_seconds=admin_role_cache_ttl,
            expiry_sweep_interval_seconds=expiry_sweep_interval,
            expiry_sweep_enabled=expiry_sweep_enabled,
        )


# Settings are validated on first access, not at module import
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build a single
    instance.

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
    """Drop the cached settings instance (used by tests after env changes)."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
