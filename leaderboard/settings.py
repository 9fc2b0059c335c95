from __future__ import annotations

from functools import lru_cache
from pydantic import BaseModel
import os


def _split_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./leaderboard.db")
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "Asia/Jakarta")
    default_categories: list[str] = _split_env_list(
        os.getenv(
            "DEFAULT_CATEGORIES",
            "10K Laki-laki,10K Perempuan,5K Laki-Laki,5K Perempuan",
        )
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))


@lru_cache
def get_settings() -> Settings:
    return Settings()
