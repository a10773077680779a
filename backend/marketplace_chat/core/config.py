"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Marketplace Chat"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/marketplace_chat.db"

    # Realtime peer (websocket) and REST fallback endpoints
    CHAT_WS_URL: str = "ws://localhost:3001/chat"
    CHAT_API_BASE_URL: str = "http://localhost:3001/api"

    # REST fallback request configuration
    CHAT_HTTP_TIMEOUT: float = 10.0  # seconds
    CHAT_HTTP_MAX_RETRIES: int = 3
    CHAT_HTTP_RETRY_DELAY: float = 0.5  # seconds, base for exponential backoff

    # Transport session
    RECONNECT_DELAY_SECONDS: float = 3.0  # fixed backoff between reconnect attempts
    CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Presence
    TYPING_TIMEOUT_SECONDS: float = 4.0  # inactivity window before typing clears
    TYPING_SWEEP_INTERVAL_SECONDS: float = 1.0

    # Support chat peer
    HISTORY_LIMIT: int = 100
    BOT_REPLY_DELAY_SECONDS: float = 1.0
    SUPPORT_BOT_NAME: str = "Support Bot"

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton instance
settings = Settings()
