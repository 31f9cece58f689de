"""
configuration of the todo client and the reference backend, read from TODO_* environment variables or a .env file
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TODO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # client
    backend_url: str = "http://127.0.0.1:5000"
    api_key: str = ""
    poll_interval: float = 1.0  # seconds between change feed polls
    request_timeout: float = 10.0
    local_db_file: str = "./todos.db"  # on-device storage of the standalone list and the session

    # reference backend
    backend_host: str = "127.0.0.1"
    backend_port: int = 5000
    backend_db_file: str = "./todobackend.db"

    # logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
