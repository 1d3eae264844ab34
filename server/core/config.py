"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=8010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    instance_name: Optional[str] = Field(default=None, env="INSTANCE_NAME")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/workflows.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Temporal
    temporal_enabled: bool = Field(default=True, env="TEMPORAL_ENABLED")
    temporal_server_address: str = Field(default="localhost:7233", env="TEMPORAL_SERVER_ADDRESS")
    temporal_namespace: str = Field(default="default", env="TEMPORAL_NAMESPACE")
    temporal_task_queue: str = Field(default="workflows.default", env="TEMPORAL_TASK_QUEUE")
    temporal_worker_enabled: bool = Field(default=True, env="TEMPORAL_WORKER_ENABLED")
    temporal_max_concurrent_activities: int = Field(default=50, env="TEMPORAL_MAX_CONCURRENT_ACTIVITIES", ge=1)

    # Orchestration activity (one attempt = one full DAG walk)
    activity_start_to_close_minutes: int = Field(default=5, env="ACTIVITY_START_TO_CLOSE_MINUTES", ge=1, le=60)
    activity_max_attempts: int = Field(default=3, env="ACTIVITY_MAX_ATTEMPTS", ge=1, le=10)
    activity_initial_interval_seconds: float = Field(default=1.0, env="ACTIVITY_INITIAL_INTERVAL_SECONDS", ge=0.1)
    activity_backoff_coefficient: float = Field(default=2.0, env="ACTIVITY_BACKOFF_COEFFICIENT", ge=1.0)
    activity_max_interval_seconds: float = Field(default=60.0, env="ACTIVITY_MAX_INTERVAL_SECONDS", ge=1.0)

    # Execution Queue Dispatcher
    dispatcher_enabled: bool = Field(default=True, env="DISPATCHER_ENABLED")
    queue_batch_size: int = Field(default=10, env="QUEUE_BATCH_SIZE", ge=1, le=500)
    queue_poll_interval_seconds: float = Field(default=5.0, env="QUEUE_POLL_INTERVAL_SECONDS", ge=0.5)
    queue_max_attempts: int = Field(default=3, env="QUEUE_MAX_ATTEMPTS", ge=1)
    queue_stale_threshold_minutes: int = Field(default=5, env="QUEUE_STALE_THRESHOLD_MINUTES", ge=1)
    queue_recovery_interval_seconds: float = Field(default=60.0, env="QUEUE_RECOVERY_INTERVAL_SECONDS", ge=5)

    # Node Execution
    http_request_timeout: float = Field(default=30.0, env="HTTP_REQUEST_TIMEOUT", ge=1, le=300)
    bulk_update_batch_size: int = Field(default=50, env="BULK_UPDATE_BATCH_SIZE", ge=1)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": "../.env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
