import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./slotwise.db")
    # Plain postgres URLs from the environment are switched to the async driver
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = _database_url()
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))
APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Idempotent slot-listing reads are retried this many extra times
SLOT_READ_RETRIES = int(os.getenv("SLOT_READ_RETRIES", 2))

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

# Widest date range a single slot listing may cover
MAX_SLOT_RANGE_DAYS = int(os.getenv("MAX_SLOT_RANGE_DAYS", 62))

# External busy-time source consulted alongside stored bookings
BUSY_TIME_PROVIDER = os.getenv("BUSY_TIME_PROVIDER", "native")
