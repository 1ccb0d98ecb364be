"""Configuration from environment variables."""
import logging
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(
            f"Missing required environment variable '{name}'. "
            "Set it in the environment or in the backend .env file."
        )
    return value


# Database
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))

# Auth
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "10080"))  # 7 days

# Media storage for product images
MEDIA_ROOT = os.getenv("MEDIA_ROOT", "./media")
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "/media")
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

# Inventory
LOW_STOCK_DEFAULT_THRESHOLD = int(os.getenv("LOW_STOCK_DEFAULT_THRESHOLD", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def build_dsn() -> str:
    """
    Build DSN from the standardized database env vars.

    Uses:
      - POSTGRES_URL (optional full DSN; if provided, it wins)
      - POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_DB, POSTGRES_PORT, POSTGRES_HOST
    """
    url = os.getenv("POSTGRES_URL")
    if url:
        return url

    user = required_env("POSTGRES_USER")
    password = required_env("POSTGRES_PASSWORD")
    db = required_env("POSTGRES_DB")
    port = required_env("POSTGRES_PORT")
    host = os.getenv("POSTGRES_HOST", "localhost")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def jwt_secret() -> str:
    # Required for security; do not default.
    return required_env("JWT_SECRET")


def cors_allow_origins() -> List[str]:
    """Origins from CORS_ALLOW_ORIGINS (comma separated); all origins when unset."""
    env_val = os.getenv("CORS_ALLOW_ORIGINS")
    if not env_val:
        return ["*"]
    return [o.strip() for o in env_val.split(",") if o.strip()]


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
