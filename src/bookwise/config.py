import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}

class Settings:
    # App
    APP_NAME: str = os.getenv("APP_NAME", "bookwise")
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    PORT: int = int(os.getenv("PORT", "8000"))
    LIBRARY_NAME: str = os.getenv("LIBRARY_NAME", "University Library")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

    # DB
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./bookwise.db")
    DB_ISOLATION_LEVEL: str | None = os.getenv("DB_ISOLATION_LEVEL")

    # Cache (Redis). Disabled when REDIS_URL is unset
    REDIS_URL: str | None = os.getenv("REDIS_URL")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = _as_bool(os.getenv("RATE_LIMIT_ENABLED"), True)
    RATE_LIMIT_STORAGE_URI: str = os.getenv("RATE_LIMIT_STORAGE_URI", "async+memory://")

    # Loans
    LOAN_PERIOD_DAYS: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    ADMIN_OVERRIDE_NOTIFY: bool = _as_bool(os.getenv("ADMIN_OVERRIDE_NOTIFY"), False)

    # Mail API
    MAIL_API_URL: str = os.getenv("MAIL_API_URL", "https://api.resend.com")
    MAIL_API_KEY: str | None = os.getenv("MAIL_API_KEY")
    MAIL_FROM: str = os.getenv("MAIL_FROM", "University Library <library@example.edu>")
    MAIL_TIMEOUT: int = int(os.getenv("MAIL_TIMEOUT", "20"))

    # Receipts
    RECEIPTS_DIR: str = os.getenv("RECEIPTS_DIR", "./var/receipts")

    # Enable/disable the due-reminder worker
    ENABLE_REMINDER_WORKER: bool = _as_bool(os.getenv("ENABLE_REMINDER_WORKER"), False)
    REMINDER_POLL_INTERVAL_SECONDS: int = int(os.getenv("REMINDER_POLL_INTERVAL_SECONDS", "3600"))

settings = Settings()
