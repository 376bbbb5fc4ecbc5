"""Application settings loaded from the environment."""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Settings:
    """
    Runtime configuration.

    Values are read once, when the instance is created. Tests build their
    own instance and pass it into the services they exercise.
    """

    def __init__(self) -> None:
        # Model provider
        self.OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
        self.OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.OPENAI_VISION_MODEL: str = os.getenv("OPENAI_VISION_MODEL", "gpt-4o")
        self.OPENAI_TIMEOUT: float = _env_float("OPENAI_TIMEOUT", 30.0)
        self.OPENAI_MAX_TOKENS: int = _env_int("OPENAI_MAX_TOKENS", 1000)
        self.OPENAI_FOLLOWUP_MAX_TOKENS: int = _env_int("OPENAI_FOLLOWUP_MAX_TOKENS", 500)
        self.QUIZ_MAX_TOKENS: int = _env_int("QUIZ_MAX_TOKENS", 2000)
        self.OPENAI_TEMPERATURE: float = _env_float("OPENAI_TEMPERATURE", 0.7)

        # Tokens
        self.JWT_SECRET: str = os.getenv("JWT_SECRET", "")
        self.JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_MINUTES: int = _env_int("JWT_EXPIRE_MINUTES", 60)

        # Key-value store
        self.DYNAMODB_TABLE: str = os.getenv("DYNAMODB_TABLE", "homework-helper")
        self.AWS_REGION: str = os.getenv("AWS_REGION", "eu-north-1")
        self.DYNAMODB_ENDPOINT_URL: Optional[str] = os.getenv("DYNAMODB_ENDPOINT_URL") or None

        # Tools
        self.DEEPL_API_KEY: str = os.getenv("DEEPL_API_KEY", "")
        self.DEEPL_API_URL: str = os.getenv(
            "DEEPL_API_URL", "https://api-free.deepl.com/v2/translate"
        )
        self.WIKIPEDIA_LANGUAGE: str = os.getenv("WIKIPEDIA_LANGUAGE", "sv")
        self.WIKIPEDIA_EXCERPT_CHARS: int = _env_int("WIKIPEDIA_EXCERPT_CHARS", 500)
        self.TOOL_HTTP_TIMEOUT: float = _env_float("TOOL_HTTP_TIMEOUT", 10.0)

        # HTTP boundary
        self.MAX_IMAGE_BYTES: int = _env_int("MAX_IMAGE_BYTES", 5 * 1024 * 1024)
        self.CORS_ORIGINS: list[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
