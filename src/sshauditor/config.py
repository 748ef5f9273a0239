from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SSHAUDITOR_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    database_url: str = Field(default="sqlite:///./ssh_db.sqlite")
    log_level: str = Field(default="INFO")
    concurrency: int = Field(default=256, ge=1, le=4096)
    timeout_ms: int = Field(default=4000, ge=1)
    scan_interval_days: int = Field(default=14, ge=0)
    batch_size: int = Field(default=50, ge=1, le=10000)
    batch_latency_seconds: float = Field(default=2.0, gt=0)
    active_window_days: int = Field(default=2, ge=1)
    logcheck_window_days: int = Field(default=14, ge=1)
    exhaustive_brute: bool = Field(default=False)
    logcheck_password: str = Field(default="logcheck")
    splunk_username: Optional[str] = Field(default=None)
    splunk_password: Optional[str] = Field(default=None)
    splunk_token: Optional[str] = Field(default=None)
    splunk_verify_tls: bool = Field(default=True)
    splunk_search_window: str = Field(default="-14d")
    splunk_timeout_seconds: float = Field(default=60.0, gt=0)


settings = Settings()
