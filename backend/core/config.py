import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./healthportal.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DEFAULT_CANCELLATION_CUTOFF_MINUTES = int(os.getenv("DEFAULT_CANCELLATION_CUTOFF_MINUTES", "120"))
AVAILABILITY_MAX_RANGE_DAYS = int(os.getenv("AVAILABILITY_MAX_RANGE_DAYS", "31"))
ALTERNATIVE_SLOT_LIMIT = int(os.getenv("ALTERNATIVE_SLOT_LIMIT", "3"))
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", "7"))

READ_RETRY_ATTEMPTS = int(os.getenv("READ_RETRY_ATTEMPTS", "2"))
READ_RETRY_BACKOFF_SECONDS = float(os.getenv("READ_RETRY_BACKOFF_SECONDS", "0.2"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if READ_RETRY_ATTEMPTS < 1:
        raise RuntimeError("READ_RETRY_ATTEMPTS must be at least 1.")
