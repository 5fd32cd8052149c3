"""
Vita Tracker — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Hosted backend: serverless functions + REST tables
    BACKEND_URL: str
    BACKEND_API_KEY: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Audio — OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""

    # Data store: "sqlite" | "hosted"
    DATA_BACKEND: str = "sqlite"
    DATABASE_PATH: str = "data/vita.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    TIMEZONE: str = "Europe/Moscow"

    # Voice assistant
    WAKE_PHRASE: str = "вита"
    SPEECH_LANGUAGE: str = "ru-RU"
    TTS_VOICE: str = "alena"
    LISTEN_TIMEOUT_SECONDS: float = 5.0

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("BACKEND_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    backend_url = os.getenv("BACKEND_URL", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not backend_url or backend_url.startswith("your-"):
        print("ERROR: BACKEND_URL is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        BACKEND_URL=backend_url,
        BACKEND_API_KEY=os.getenv("BACKEND_API_KEY", ""),
        HTTP_TIMEOUT_SECONDS=os.getenv("HTTP_TIMEOUT_SECONDS", "30"),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        DATA_BACKEND=os.getenv("DATA_BACKEND", "sqlite"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/vita.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Moscow"),
        WAKE_PHRASE=os.getenv("WAKE_PHRASE", "вита"),
        SPEECH_LANGUAGE=os.getenv("SPEECH_LANGUAGE", "ru-RU"),
        TTS_VOICE=os.getenv("TTS_VOICE", "alena"),
        LISTEN_TIMEOUT_SECONDS=os.getenv("LISTEN_TIMEOUT_SECONDS", "5"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
