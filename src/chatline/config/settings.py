from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from pathlib import Path
from typing import Literal
from functools import lru_cache
from ..validators.normalizers import to_uppercase, to_lowercase


class Settings(BaseSettings):
    """
    Application settings loaded from environment (and an optional `.env` file).
    """

    # Environment
    ENV: Literal["development", "testing", "staging", "production"] = "development"

    # Database configuration
    POSTGRES_DRIVER: str = "psycopg"
    POSTGRES_USERNAME: str = "chatline"
    POSTGRES_PASSWORD: str = "chatline"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "chatline"

    # Test database configuration
    TEST_POSTGRES_DB: str | None = None
    TESTING: bool = False

    # Full URL override (e.g. sqlite+aiosqlite:///./chatline.db for local runs)
    DATABASE_URL_OVERRIDE: str | None = None

    # SQLAlchemy
    SQLALCHEMY_ECHO: bool = False
    DB_AUTO_CREATE: bool = False

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"
    LOG_TO_STDOUT: bool = True
    LOG_DIR: Path = Path("/var/log/chatline")
    LOG_MAX_BYTES: int = 10_000_000  # 10 MB
    LOG_BACKUP_COUNT: int = 5
    LOG_USE_QUEUE: bool = False
    ENABLE_SQL_LOGGING: bool = False

    # Generation provider
    GENERATION_PROVIDER: Literal["gemini", "mock"] = "mock"
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    GENERATION_TIMEOUT_SECONDS: float = 15.0
    GENERATION_MAX_RETRIES: int = 3
    GENERATION_BACKOFF_BASE_SECONDS: float = 1.0
    GENERATION_BACKOFF_MAX_SECONDS: float = 8.0
    GENERATION_MOCK_LATENCY_SECONDS: float = 0.5

    # Conversation titles
    TITLE_MESSAGE_THRESHOLD: int = 2
    TITLE_MAX_RETRIES: int = 0

    # Messages
    MESSAGE_MAX_LENGTH: int = 5000

    # Background completion of replies that could not be produced synchronously
    PENDING_REPLY_ATTEMPTS: int = 3
    PENDING_REPLY_DELAY_SECONDS: float = 5.0

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # --- Derived settings ---
    @property
    def DATABASE_URL(self) -> str:
        """
        Return the database URL for the current environment.

        - `DATABASE_URL_OVERRIDE` wins when set.
        - With `TESTING=True` and `TEST_POSTGRES_DB` set, the test database name is used
          so a test run never touches the regular database.
        - Otherwise the regular `POSTGRES_DB` is used.
        """
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE

        database = self.POSTGRES_DB
        if self.TESTING and self.TEST_POSTGRES_DB:
            database = self.TEST_POSTGRES_DB

        return (
            f"postgresql+{self.POSTGRES_DRIVER}://"
            f"{self.POSTGRES_USERNAME}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{database}"
        )

    # --- Validators ---
    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: str | None) -> str | None:
        """
        Normalize LOG_LEVEL to uppercase before validation, since logging expects
        level names like "DEBUG" or "INFO".
        """
        return to_uppercase(v)

    @field_validator("LOG_FORMAT", "GENERATION_PROVIDER", mode="before")
    def normalize_lowercase(cls, v: str | None) -> str | None:
        """
        Normalize enumerated string settings to lowercase.
        """
        return to_lowercase(v)

    model_config = SettingsConfigDict(
        # .env lives at the package root (src/chatline/.env)
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Settings only depend on the environment, so one cached instance is shared.
@lru_cache()
def get_settings() -> Settings:
    return Settings()
