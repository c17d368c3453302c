import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):

    environment: str = "development"
    log_level: str = "INFO"

    postgres_user: str = os.getenv("POSTGRES_USER", "user")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "password")
    postgres_db: str = os.getenv("POSTGRES_DB", "symposium_db")
    postgres_host: str = os.getenv("POSTGRES_HOST", "db")
    postgres_port: int = 5432

    # Full SQLAlchemy URL; takes precedence over the postgres_* parts when set
    database_url: Optional[str] = None
    database_echo: bool = False

    @property
    def async_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Tokens are issued by the external auth service; we only verify them
    secret_key: str = os.getenv("SECRET_KEY", "change-me-in-production")
    algorithm: str = "HS256"

    cors_origins_str: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",")]

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # "memory" keeps fan-out inside one process, "redis" spans workers
    notifier_backend: str = "memory"
    notifier_queue_size: int = 100

    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

    deadline_sweep_interval_seconds: float = 30.0
    run_inprocess_sweeper: bool = True

    default_max_warning_count: int = 2

    slow_request_threshold: float = 1.0

    default_timezone: str = "Asia/Kolkata"
    timezone_display_format: str = "%d.%m.%Y, %H:%M:%S"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
