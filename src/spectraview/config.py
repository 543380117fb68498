from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """Capture pipeline settings, read from ``SPECTRAVIEW_*`` env vars or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="SPECTRAVIEW_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    api_key: Optional[str] = None
    api_endpoint: Optional[str] = None
    app_id: str = "unknown"
    user_id: Optional[str] = None

    # batching
    batch_size: int = 50
    flush_interval: float = 30.0  # seconds
    heartbeat_interval: float = 60.0  # seconds

    # overflow storage
    enable_local_storage: bool = True
    max_local_events: int = 1000
    storage_path: Optional[Path] = None  # unset -> in-memory store

    # transport
    request_timeout: float = 10.0
    best_effort_timeout: float = 2.0

    debug: bool = False

    @field_validator("api_endpoint")
    @classmethod
    def _strip_endpoint(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @field_validator("batch_size", "max_local_events")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @property
    def offline(self) -> bool:
        return self.api_endpoint is None


@lru_cache()
def get_settings() -> PipelineSettings:
    return PipelineSettings()
