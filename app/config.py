"""
Application configuration from environment variables.

In development a .env file at the project root is loaded first (production
sets env vars directly). Values are read once at import; malformed numbers
fall back to their defaults instead of failing startup.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Environment: development | production (affects .env loading, error details)
ENV = os.getenv("ENV", "development").lower()

if ENV == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _int_env(key: str, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(os.getenv(key, str(default))))
    except ValueError:
        return default


def _float_env(key: str, default: float) -> float:
    try:
        return max(0.0, float(os.getenv(key, str(default))))
    except ValueError:
        return default


def _bool_env(key: str, default: bool = False) -> bool:
    return os.getenv(key, "true" if default else "false").lower() in ("1", "true", "yes")


# Frontend origin allowed by CORS (credentials enabled, so never "*")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

# Skip create_all at startup (set in production when using migrations)
SKIP_DB_INIT = _bool_env("SKIP_DB_INIT")

# Blob storage root; user blobs go under storage/users/user_<id>/blobs/...
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "storage")

# Session cookie and token lifetime; cookie max_age matches session expiry
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
SESSION_MAX_AGE = _int_env("SESSION_MAX_AGE", 7 * 24 * 3600, minimum=60)
SESSION_SLIDING_EXPIRY = _bool_env("SESSION_SLIDING_EXPIRY")

# Secure cookie flag (set True in production over HTTPS)
SECURE_COOKIES = _bool_env("SECURE_COOKIES")

# bcrypt cost factor; tests lower this to keep hashing fast
BCRYPT_ROUNDS = min(31, _int_env("BCRYPT_ROUNDS", 12, minimum=4))

# Upload limits: per-file size and concurrent uploads per user
MAX_UPLOAD_SIZE_BYTES = _int_env("MAX_UPLOAD_SIZE_BYTES", 52428800, minimum=1)
MAX_CONCURRENT_UPLOADS = _int_env("MAX_CONCURRENT_UPLOADS", 2, minimum=1)
UPLOAD_SLOT_TIMEOUT = _float_env("UPLOAD_SLOT_TIMEOUT", 10.0)
UPLOAD_CHUNK_SIZE = 64 * 1024

# Multipart framing allowance on top of the file size when checking Content-Length
MULTIPART_OVERHEAD_BYTES = 64 * 1024

# Folder tree limits
FOLDER_NAME_MAX_LENGTH = _int_env("FOLDER_NAME_MAX_LENGTH", 255, minimum=1)
MAX_FOLDER_DEPTH = _int_env("MAX_FOLDER_DEPTH", 64, minimum=1)

# Backoff before the single retry of a failed blob operation (seconds)
STORAGE_RETRY_DELAY = _float_env("STORAGE_RETRY_DELAY", 0.2)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
