import uuid
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError


def gen_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Timezone-aware datetime from an ISO 8601 string; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_absolute_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def resolve_asset_url(value: Optional[str], base_url: str) -> Optional[str]:
    """
    Turn an asset key or URL into something fetchable.
    Absolute URLs pass through, bare keys are prefixed with the asset base.
    """
    if not value:
        return None
    value = value.strip()
    if not value or value in ("null", "undefined"):
        return None
    if is_absolute_url(value):
        return value
    return f"{base_url.rstrip('/')}/{value.lstrip('/')}"


def measure_aspect_ratio(image_bytes: bytes) -> Optional[float]:
    """width / height of an encoded image, or None if it cannot be read."""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError):
        return None
    if not width or not height:
        return None
    return width / height


async def fetch_aspect_ratio(image_url: str, timeout: float = 30.0) -> Optional[float]:
    """Download the source image and measure it."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        r = await client.get(image_url)
        r.raise_for_status()
        return measure_aspect_ratio(r.content)
