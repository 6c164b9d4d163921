"""
Configuration management for the application.

Loads environment variables and provides centralized config access.
Every tunable threshold used by the ingestion pipeline lives here.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Flask settings
    FLASK_ENV: str = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # OpenAI settings
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_EMBEDDING_MODEL: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "60"))

    # Provider gateway (pacing + retry)
    GATEWAY_MAX_CONCURRENT: int = int(os.getenv("GATEWAY_MAX_CONCURRENT", "2"))
    GATEWAY_MIN_DELAY_MS: int = int(os.getenv("GATEWAY_MIN_DELAY_MS", "1000"))
    GATEWAY_MAX_RETRIES: int = int(os.getenv("GATEWAY_MAX_RETRIES", "3"))
    GATEWAY_BASE_DELAY_MS: int = int(os.getenv("GATEWAY_BASE_DELAY_MS", "1000"))
    GATEWAY_MAX_DELAY_MS: int = int(os.getenv("GATEWAY_MAX_DELAY_MS", "60000"))

    # Preprocessing: a note is "short" only if it is under all three limits
    SHORT_NOTE_MAX_CHARS: int = int(os.getenv("SHORT_NOTE_MAX_CHARS", "500"))
    SHORT_NOTE_MAX_SENTENCES: int = int(os.getenv("SHORT_NOTE_MAX_SENTENCES", "5"))
    SHORT_NOTE_MAX_WORDS: int = int(os.getenv("SHORT_NOTE_MAX_WORDS", "100"))

    # Routing
    USE_AI_ROUTER: bool = _env_bool("USE_AI_ROUTER")

    # Confidence gates (0-100)
    ENTRY_MATCH_THRESHOLD: int = int(os.getenv("ENTRY_MATCH_THRESHOLD", "85"))
    THREAD_RELATION_THRESHOLD: int = int(os.getenv("THREAD_RELATION_THRESHOLD", "70"))

    # Embeddings / relations
    RELATION_SIMILARITY_THRESHOLD: float = float(os.getenv("RELATION_SIMILARITY_THRESHOLD", "0.7"))
    EMBEDDING_MAX_CHARS: int = int(os.getenv("EMBEDDING_MAX_CHARS", "8000"))
    EMBEDDING_DIMENSIONS: int = 1536

    # Classification
    DEFAULT_BOOK_NAME: str = os.getenv("DEFAULT_BOOK_NAME", "Bandeja de Entrada")
    OUTPUT_LANGUAGE: str = os.getenv("OUTPUT_LANGUAGE", "Spanish")
    TASK_MATCH_MIN_SIMILARITY: float = float(os.getenv("TASK_MATCH_MIN_SIMILARITY", "0.75"))

    # Auth (bearer tokens verified against a JWKS endpoint)
    AUTH_JWKS_URL: Optional[str] = os.getenv("AUTH_JWKS_URL")
    AUTH_ISSUER: Optional[str] = os.getenv("AUTH_ISSUER")

    # Storage settings
    BASE_DIR: Path = Path(__file__).parent.parent
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")

    # Background post-processing (embeddings + relations)
    POST_PROCESS_WORKERS: int = int(os.getenv("POST_PROCESS_WORKERS", "2"))

    # CORS
    FRONTEND_URL: Optional[str] = os.getenv("FRONTEND_URL")

    @classmethod
    def validate(cls):
        """Validate required configuration"""
        errors = []

        if not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is not set")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")
