from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    DEBUG: bool = False

    # DATABASE_URL may point at Postgres (JSONB columns) or SQLite for local
    # development and tests.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./api_sync.db")

    # Outbound HTTP behaviour of the sync engine.
    # Each individual fetch attempt is bounded by SYNC_HTTP_TIMEOUT_SECONDS.
    SYNC_HTTP_TIMEOUT_SECONDS: float = 30.0
    # Used when a connector does not set rateLimitConfig.retryAttempts.
    SYNC_DEFAULT_MAX_RETRIES: int = 3
    # First backoff after an HTTP 429; doubles on every further attempt.
    SYNC_INITIAL_BACKOFF_SECONDS: float = 1.0

    # Scheduler for shared connectors with rateLimitConfig.syncSchedule.
    SCHEDULER_ENABLED: bool = True
    # Identity scheduled jobs run under. When unset the first admin user
    # found in the database is used on every tick.
    SCHEDULER_OWNER_ID: Optional[str] = None

    # Seeded by app.init_db when no admin exists yet.
    INITIAL_ADMIN_EMAIL: str = "admin@example.com"

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith("postgres")

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
