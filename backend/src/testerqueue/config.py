from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from testerqueue.errors import FatalStartupError


class Settings(BaseSettings):
    # Regions are independent partitions; every one needs a queue channel
    regions: list[str] = Field(default_factory=lambda: ["EU", "NA", "AS"])
    queue_channels: dict[str, str]

    # Queue behaviour
    max_queue_size: int = Field(default=20, ge=1)
    confirmation_grace_period_minutes: float = Field(default=5, gt=0)
    waitlist_cooldown_days: int = Field(default=30, ge=0)

    # Persistence
    data_dir: Path = Path("data")
    save_debounce_seconds: float = 2.0

    # Scheduler
    tick_seconds: float = 1.0
    confirmation_check_interval_seconds: float = 1.0
    promotion_interval_seconds: float = 5.0
    scheduler_enabled: bool = True

    # App
    environment: str = "development"
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "TESTERQUEUE_",
        "env_file": ["../.env", ".env"],
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def _check_regions(self) -> "Settings":
        self.regions = [region.strip().upper() for region in self.regions]
        if not self.regions:
            raise ValueError("at least one region must be configured")
        missing = [region for region in self.regions if not self.queue_channels.get(region)]
        if missing:
            raise ValueError(f"queue_channels is missing entries for: {', '.join(missing)}")
        return self

    @property
    def grace_period(self) -> timedelta:
        return timedelta(minutes=self.confirmation_grace_period_minutes)


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, failing startup on invalid config."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise FatalStartupError(f"Invalid configuration: {e}") from e
