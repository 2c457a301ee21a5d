from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MESSENGER_CLI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    app_name: str = "Messenger CLI"
    server_url: str = "http://localhost:8000"
    api_prefix: str = "/v1"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".messenger-cli")

    thread_limit: int = Field(default=50, ge=1)
    page_size: int = Field(default=50, ge=1, le=100)
    poll_interval_sec: float = Field(default=2.0, gt=0)
    request_timeout_sec: float = Field(default=10.0, gt=0)

    log_filename: str = "messenger-cli.log"

    @field_validator("server_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("data_dir", mode="after")
    @classmethod
    def expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "data"

    @property
    def state_file(self) -> Path:
        return self.data_dir / "appstate.json"

    @property
    def log_file(self) -> Path:
        return self.data_dir / self.log_filename

    @property
    def api_base_url(self) -> str:
        return f"{self.server_url}{self.api_prefix}"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
