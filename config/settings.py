import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from config/.env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


class Settings:
    # Keys returned by the render backend / asset store are resolved against this
    ASSET_BASE_URL: str = os.getenv("ASSET_BASE_URL", "https://media.example.com")

    # The dispatcher posts {mode, payload} here (the /studio proxy in backend/app.py)
    STUDIO_ENDPOINT_URL: str = os.getenv("STUDIO_ENDPOINT_URL", "http://127.0.0.1:8000/studio")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

    STUDIO_PHOTO_WEBHOOK_URL: str | None = os.getenv("STUDIO_PHOTO_WEBHOOK_URL")
    STUDIO_PHOTO_SECRET: str | None = os.getenv("STUDIO_PHOTO_SECRET")
    STUDIO_VIDEO_WEBHOOK_URL: str | None = os.getenv("STUDIO_VIDEO_WEBHOOK_URL")
    STUDIO_VIDEO_SECRET: str | None = os.getenv("STUDIO_VIDEO_SECRET")

    DISPATCH_TIMEOUT: float = _float_env("DISPATCH_TIMEOUT", 35.0)  # seconds
    UPSTREAM_TIMEOUT: float = _float_env("UPSTREAM_TIMEOUT", 25.0)  # seconds

    PHOTO_POLL_ATTEMPTS: int = _int_env("PHOTO_POLL_ATTEMPTS", 40)
    PHOTO_POLL_INTERVAL: float = _float_env("PHOTO_POLL_INTERVAL", 0.8)
    VIDEO_POLL_ATTEMPTS: int = _int_env("VIDEO_POLL_ATTEMPTS", 300)
    VIDEO_POLL_INTERVAL: float = _float_env("VIDEO_POLL_INTERVAL", 2.0)

    ASSET_QUERY_LIMIT: int = _int_env("ASSET_QUERY_LIMIT", 15)

    CREDIT_COST_START: int = 18
    CREDIT_COST_STEP: int = 1
    CREDIT_COST_FLOOR: int = 8

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
