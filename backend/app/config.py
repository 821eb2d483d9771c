"""Settings for the API, the Celery workers and the schedule poller.

Everything is read from the environment (or ``.env``) once per process.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    ENVIRONMENT: str = "development"  # development, testing, production

    # Comma separated
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Celery broker and result backend
    REDIS_URL: str = "redis://localhost:6379/0"

    # Scheduler
    SCHEDULER_POLL_INTERVAL_SECONDS: int = 60
    SCHEDULER_BATCH_SIZE: int = 10
    SCHEDULER_MAX_CONCURRENT: int = 5
    SCHEDULER_BACKOFF_BASE_SECONDS: int = 60
    SCHEDULER_BACKOFF_MAX_SECONDS: int = 86400
    SCHEDULER_MAX_CONSECUTIVE_FAILURES: int = 10  # 0 = retry forever
    SCHEDULER_IN_PROCESS: bool = False

    # Executor
    EXECUTOR_NODE_TIMEOUT_SECONDS: int = 300
    EXECUTOR_MAX_LOOP_ITERATIONS: int = 1000
    WORKFLOW_APPROVALS_ENABLED: bool = True
    WEBHOOK_TIMEOUT_SECONDS: int = 30
    WEBHOOK_ALLOW_PRIVATE_NETWORKS: bool = False

    # Empty means notifications are only logged
    NOTIFICATION_RELAY_URL: str = ""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @field_validator("SCHEDULER_POLL_INTERVAL_SECONDS", "SCHEDULER_BATCH_SIZE", "SCHEDULER_MAX_CONCURRENT")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
