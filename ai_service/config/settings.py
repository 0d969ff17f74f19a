"""
Environment-driven settings.

Only the composition root (``ai_service.containers``) and the CLI read
these; adapters receive explicit clients and keys.
"""

import os
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    # Providers
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    CHATBASE_API_KEY: Optional[str] = None
    CHATBASE_CHATBOT_ID: Optional[str] = None

    # Register the deterministic mock adapter for every provider
    AI_USE_MOCK: bool = False

    # Storage and config
    AI_DB_PATH: str = "ai_service.db"
    AI_CONFIG_PATH: Optional[str] = None

    REQUEST_TIMEOUT_SECONDS: float = 60.0
    LOG_LEVEL: str = "INFO"


def load_settings() -> Settings:
    """Read settings from the process environment."""
    return Settings(
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY") or None,
        ANTHROPIC_API_KEY=os.getenv("ANTHROPIC_API_KEY") or None,
        GEMINI_API_KEY=os.getenv("GEMINI_API_KEY") or None,
        CHATBASE_API_KEY=os.getenv("CHATBASE_API_KEY") or None,
        CHATBASE_CHATBOT_ID=os.getenv("CHATBASE_CHATBOT_ID") or None,
        AI_USE_MOCK=os.getenv("AI_USE_MOCK", "false").lower() in ("1", "true", "yes"),
        AI_DB_PATH=os.getenv("AI_DB_PATH", "ai_service.db"),
        AI_CONFIG_PATH=os.getenv("AI_CONFIG_PATH") or None,
        REQUEST_TIMEOUT_SECONDS=float(os.getenv("AI_REQUEST_TIMEOUT", "60")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
