from typing import Literal

from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    storage: Literal["memory", "mongo"] = "mongo"
    database_url: str = "mongodb://localhost:27017/sequencer"
    host: str = "127.0.0.1"
    port: int = 3200
    debug: bool = False
    cors_origins: list[str] = []
    timezone: str = "UTC"  # Calendar used for {year}/{month}/{day} and reset boundaries
    max_collision_attempts: int = 1000  # Used-code collisions tolerated per generate call
    max_conflict_retries: int = 20  # Revision conflicts tolerated per write before giving up

    model_config = {
        "env_file": [".env"],
        "env_prefix": "SEQUENCER_",
        "extra": "ignore",
    }
