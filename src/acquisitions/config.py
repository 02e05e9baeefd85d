from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///acquisitions.db", env="DATABASE_URL")
    api_title: str = Field("Acquisitions API", env="API_TITLE")
    host: str = Field("0.0.0.0", env="HOST")
    port: int = Field(3000, env="PORT")
    log_level: str = Field("INFO", env="LOG_LEVEL")
    cors_origins: List[str] = Field(["*"], env="CORS_ORIGINS")
    # Matches the 100kb default of the usual JSON body parsers
    body_limit: int = Field(100 * 1024, env="BODY_LIMIT")


settings = Settings()
