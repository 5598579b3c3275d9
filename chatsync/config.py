from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "chatsync"
    # No Redis -> change notifications stay inside this process
    redis_url: Optional[str] = None

    min_voice_note_seconds: float = Field(default=1.0, ge=0)
    display_timezone: str = "UTC"

    # second half of a denormalized write (conversation summary, conversation on accept)
    followup_write_attempts: int = Field(default=3, ge=1)
    followup_retry_delay_seconds: float = Field(default=0.2, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
