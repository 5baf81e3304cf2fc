"""
Application configuration module.

Loads settings from environment variables (or .env file) using pydantic-settings.
All sensitive values (DB credentials) come from environment — never hardcoded.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Cap Table Management API.

    Environment variables are loaded automatically from .env if present.
    In production, these should be injected via the container orchestrator.
    """

    PROJECT_NAME: str = "Cap Table Management API"
    API_V1_STR: str = "/api/v1"

    # ── SQLite mode (no external DB required) ──
    USE_SQLITE: bool = False

    # ── PostgreSQL connection parameters ──
    # Empty defaults let USE_SQLITE=true start without dummy PG variables;
    # the validator below still fails fast when PostgreSQL mode is selected.
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SERVER: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_PORT: int = 5432

    @model_validator(mode="after")
    def _require_pg_credentials_unless_sqlite(self) -> "Settings":
        """Fail fast if PostgreSQL credentials are missing in production mode."""
        if not self.USE_SQLITE:
            missing = [
                name
                for name in (
                    "POSTGRES_USER",
                    "POSTGRES_PASSWORD",
                    "POSTGRES_SERVER",
                    "POSTGRES_DB",
                )
                if not getattr(self, name)
            ]
            if missing:
                vars_list = ", ".join(missing)
                raise ValueError(
                    f"PostgreSQL mode requires these environment variables: "
                    f"{vars_list}.\n\n"
                    f"Either set them (in .env or the environment):\n"
                    f"       POSTGRES_USER=captable_user\n"
                    f"       POSTGRES_PASSWORD=captable_password\n"
                    f"       POSTGRES_SERVER=127.0.0.1\n"
                    f"       POSTGRES_DB=captable_db\n\n"
                    f"or run against in-memory SQLite:\n"
                    f"       USE_SQLITE=true uvicorn captable.main:app"
                )
        return self

    # ── Connection pool tuning ──
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30  # seconds to wait for a connection from the pool
    DB_POOL_RECYCLE: int = 1800  # seconds before a connection is recycled

    # Startup connection attempts before the app runs in degraded mode
    DB_CONNECT_RETRIES: int = 4
    DB_CONNECT_RETRY_DELAY: float = 2.0

    # ── CORS ──
    # Comma-separated list of allowed origins. "*" in dev, restrict in prod.
    CORS_ORIGINS: str = "*"

    # ── Logging ──
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 5

    # ── Read cache ──
    CACHE_ENABLED: bool = True
    CACHE_TTL: float = 30.0
    CACHE_MAX_SIZE: int = 1000

    # ── Circuit breaker (database) ──
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0

    # ── Domain defaults ──
    KYC_VALIDITY_DAYS: int = 180
    DEFAULT_PROJECT_NAME: str = "Main Project"
    DEFAULT_PROJECT_DESCRIPTION: str = "Default project"
    DEFAULT_CAP_TABLE_NAME: str = "Main Cap Table"
    DEFAULT_CAP_TABLE_DESCRIPTION: str = "Default cap table for the project"

    @property
    def DATABASE_URL(self) -> str:
        """Construct the async database DSN.

        Returns an in-memory SQLite URL when ``USE_SQLITE`` is enabled,
        otherwise a PostgreSQL DSN for asyncpg.
        """
        if self.USE_SQLITE:
            return "sqlite+aiosqlite://"
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
