import sys

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Defines the application's configuration settings.

    Pydantic will automatically read from the environment or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./event_sorter.db"

    APP_BASE_URL: str = "http://localhost:8000"

    OPENAI_API_KEY: str

    OPENAI_MODEL: str = "gpt-4o"

    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    URL_FETCH_TIMEOUT_SECONDS: float = 10.0

    MIN_PAGE_TEXT_LENGTH: int = 50

    JWT_SECRET_KEY: str

    GOOGLE_CLIENT_ID: str

    GOOGLE_CLIENT_SECRET: str

    CALENDAR_TIMEZONE: str = "UTC"

    UPLOAD_DIR: str = "uploads"

    MAILER_CLIENT_ID: str = ""

    MAILER_CLIENT_SECRET: str = ""

    MAILER_TENANT_ID: str = ""

    MAILER_SENDER_EMAIL: str = ""

    LOGGING_LEVEL: str = "INFO"


try:
    settings = Settings()

except Exception as e:
    print(f"FATAL: Failed to load application settings: {e}", file=sys.stderr)
    sys.exit("Failed to load configuration. Exiting.")
