"""Runtime settings for the streaming indexer."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Streaming settings.

    Environment variables prefixed with SOLCMETA_ (or a .env file) are loaded
    and validated using Pydantic. Command line flags take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="SOLCMETA_", env_file=".env", extra="ignore"
    )

    # Execution client
    rpc_url: Optional[str] = None
    start_block: Optional[int] = Field(default=None, ge=0)
    confirmations: int = Field(default=0, ge=0)
    poll_interval: float = Field(default=2.0, gt=0)
    reorg_depth: int = Field(default=64, ge=1)
    max_blocks_per_poll: int = Field(default=100, ge=1)

    # Progress
    cursor_path: Path = Path("solcmeta-cursor.json")

    # Output
    sink: Literal["console", "file", "http"] = "console"
    output_path: Path = Path("solcmeta-records.ndjson")
    sink_url: Optional[str] = None
    sink_timeout: float = Field(default=10.0, gt=0)
    retry_delay: float = Field(default=1.0, gt=0)
    max_retry_delay: float = Field(default=30.0, gt=0)

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @model_validator(mode="after")
    def check_sink(self) -> "Settings":
        if self.sink == "http" and not self.sink_url:
            raise ValueError("sink_url is required when sink is 'http'")
        if self.max_retry_delay < self.retry_delay:
            raise ValueError("max_retry_delay must not be below retry_delay")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
