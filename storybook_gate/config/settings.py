from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict


class LimiterSettings(BaseModel):
    interval_s: float = Field(15 * 60, gt=0)
    max_requests: int = Field(10, ge=0)

    # Defaults to twice the window when unset.
    cleanup_interval_s: float | None = Field(None, gt=0)
    shards: int = Field(64, ge=1, le=4096)

    def effective_cleanup_interval_s(self) -> float:
        if self.cleanup_interval_s is not None:
            return self.cleanup_interval_s
        return 2 * self.interval_s


class WatcherSettings(BaseModel):
    # 60 x 1s: a pending job is abandoned after roughly one minute.
    max_attempts: int = Field(60, ge=1)
    poll_interval_s: float = Field(1.0, ge=0)
    transport_retries: int = Field(2, ge=0, le=20)
    transport_retry_delay_s: float = Field(0.5, ge=0)


class ProviderSettings(BaseModel):
    base_url: str = "https://api.replicate.com/v1"
    # Read from REPLICATE_API_TOKEN when not set here.
    api_token: str | None = None
    model_version: str = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
    timeout_s: float = Field(30.0, gt=0)

    # fal.ai is used when no Replicate token is configured. Read from FAL_KEY.
    fal_key: str | None = None
    fal_base_url: str = "https://queue.fal.run"
    fal_model: str = "fal-ai/face-to-sticker"


class LoggingSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = Field(True, alias="json")


class Settings(BaseModel):
    limiter: LimiterSettings = Field(default_factory=LimiterSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _cleanup_not_faster_than_window(self) -> "Settings":
        cleanup = self.limiter.cleanup_interval_s
        if cleanup is not None and cleanup < self.limiter.interval_s / 10:
            raise ValueError("limiter.cleanup_interval_s must be at least a tenth of limiter.interval_s")
        return self
