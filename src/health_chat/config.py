"""Application settings loaded from environment variables."""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Runtime configuration. Credentials are only ever read from the environment."""

    def __init__(self) -> None:
        self.gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY") or None
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self.advice_language: str = os.getenv("ADVICE_LANGUAGE", "Arabic")
        self.chat_locale: str = os.getenv("CHAT_LOCALE", "en")
        self.chat_db_path: str = os.getenv("CHAT_DB_PATH", "chat_history.sqlite3")
        self.relay_url: str = os.getenv("RELAY_URL", "http://127.0.0.1:5000")
        self.rate_limit: int = int(os.getenv("RATE_LIMIT", "50"))
        self.rate_limit_window: int = int(os.getenv("RATE_LIMIT_WINDOW", "60"))
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT", "5000"))

    @property
    def llm_key_configured(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
