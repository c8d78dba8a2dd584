"""Application configuration management."""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


STORE_BACKENDS = ("memory", "sql")


@dataclass
class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "Taskboard"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"  # development, staging, production

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # Store
    store_backend: str = "memory"  # memory or sql
    database_url: str = "sqlite+aiosqlite:///./taskboard.db"

    # Listing
    task_list_limit: int = 100

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # json or text

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, "
                f"got '{self.store_backend}'"
            )
        if self.task_list_limit <= 0:
            raise ValueError("TASK_LIST_LIMIT must be positive")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


def load_settings_from_env() -> Settings:
    """Load settings from environment variables."""

    def get_bool(key: str, default: bool = False) -> bool:
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes")

    def get_int(key: str, default: int) -> int:
        return int(os.getenv(key, str(default)))

    return Settings(
        # App
        app_name=os.getenv("APP_NAME", "Taskboard"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        debug=get_bool("DEBUG", False),
        environment=os.getenv("ENVIRONMENT", "development"),

        # Server
        host=os.getenv("HOST", "0.0.0.0"),
        port=get_int("PORT", 3000),

        # Store
        store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./taskboard.db"),

        # Listing
        task_list_limit=get_int("TASK_LIST_LIMIT", 100),

        # Logging
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings_from_env()


def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    get_settings.cache_clear()
