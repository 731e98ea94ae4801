from typing import Literal, Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="JOBENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy URL; defaults to ~/.jobengine/jobs.db"
    )

    # Scheduler
    disable_scheduler: bool = Field(
        default=False,
        validation_alias=AliasChoices("JOBENGINE_DISABLE_SCHEDULER", "DISABLE_JOB_SCHEDULER"),
        description="Do not run the dispatcher and cron runner in this process",
    )
    dispatch_interval: float = Field(default=5.0, gt=0, description="Dispatcher poll period in seconds")
    scheduler_interval: float = Field(default=60.0, gt=0, description="Cron runner poll period in seconds")
    job_timeout: float = Field(
        default=1800.0, ge=0, description="Seconds a job may stay active before it is failed; 0 disables"
    )
    max_backoff_ms: int = Field(default=3_600_000, ge=1, description="Upper bound on any retry delay")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

def get_settings(**overrides) -> Settings:
    """Settings from the environment, with explicit (non-None) overrides applied."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
