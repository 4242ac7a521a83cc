"""Configuration loading from environment variables with validation."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Anchor all paths to the project root (two levels up from this file)
_PROJECT_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SEOIQ_",
        case_sensitive=False,
    )

    # Remote SEO IQ API
    api_base_url: str = "http://localhost:3000/api"
    api_token: str = ""
    request_timeout: float = 120.0

    # Storage
    db_path: Path = _PROJECT_DIR / "data" / "autopilot.db"

    # Logging
    log_level: str = "INFO"

    # Pipeline defaults
    generate_thumbnail: bool = True
    submit_indexing: bool = True
    refresh_lookback_days: int = 90
    max_articles_per_run: int = 5

    # Scheduling
    nightly_run_hour: int = 6  # UTC
    run_lease_minutes: int = 60


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    load_dotenv(_PROJECT_DIR / ".env")
    return Settings(api_token=os.getenv("SEOIQ_API_TOKEN", ""))
