# atira_chat/core/config.py
import os
from typing import List, Literal

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Setup environment variables.
        - DATABASE_URL the SQLAlchemy async URL of the message store
        - JWT_SECRET / JWT_ALGORITHM used to verify bearer tokens
        - PUB_SUB_SERVICE the fan-out backend to use: "local" or "redis"
        - MAX_MESSAGE_LENGTH upper bound on message content
        - HISTORY_LIMIT number of messages replayed on join (0 = whole room)
        - CHAT_EMIT_REJECTIONS send an error event for unauthorized actions
    """

    def __init__(self) -> None:
        # Load environment variables from the .env file
        load_dotenv()

        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./atira_chat.db")

        self.JWT_SECRET: str = os.getenv("JWT_SECRET", "your-secret-key-here")
        self.JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

        self.PUB_SUB_SERVICE: Literal["local", "redis"] = os.getenv("PUB_SUB_SERVICE", "local")

        self.REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
        self.REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
        self.REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
        self.REDIS_SSL: bool = _env_bool("REDIS_SSL", False)

        self.MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "500"))
        self.HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "0"))
        self.CHAT_EMIT_REJECTIONS: bool = _env_bool("CHAT_EMIT_REJECTIONS", False)

        self.CORS_ORIGINS: List[str] = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
        ]


settings = Settings()
