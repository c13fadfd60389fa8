"""Configuration management using Pydantic Settings"""

from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    DB_PATH: Path = PROJECT_ROOT / "data" / "lineage.db"
    # Exported session dump used when a guidance request carries no records
    SESSION_DUMP_PATH: Optional[Path] = None

    # Text generation: primary route
    PRIMARY_BASE_URL: str = "https://openrouter.ai/api/v1"
    PRIMARY_MODEL: str = "x-ai/grok-4-fast"
    PRIMARY_API_KEY: str = ""

    # Text generation: fallback route (different provider)
    FALLBACK_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    FALLBACK_MODEL: str = "gemini-2.5-flash-lite"
    FALLBACK_API_KEY: str = ""

    GENERATION_TIMEOUT: float = 60.0
    MAX_TOKENS: int = 1500
    TEMPERATURE: float = 0.7

    # Guidance cache
    GUIDANCE_CACHE_TTL_HOURS: int = 24

    # Window used for the recency bonus
    RECENT_WINDOW_DAYS: int = 7

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def guidance_ttl(self) -> timedelta:
        return timedelta(hours=self.GUIDANCE_CACHE_TTL_HOURS)

    @property
    def recent_window(self) -> timedelta:
        return timedelta(days=self.RECENT_WINDOW_DAYS)


settings = Settings()
