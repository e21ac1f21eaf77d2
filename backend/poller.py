# backend/poller.py
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Tuple

from config.settings import settings

from .errors import StoreError
from .model import AssetRecord, LatestAssets, Mode
from .stores import AssetStore
from .utils import parse_iso, resolve_asset_url

logger = logging.getLogger(__name__)

VIDEO_ROLES = ("video", "video_result")


def _created_since(record: AssetRecord, since: Optional[datetime]) -> bool:
    if since is None:
        return True
    created = parse_iso(record.created_at)
    return created is not None and created >= since


def summarize_assets(
    records: Iterable[AssetRecord], base_url: str, since: Optional[datetime] = None
) -> LatestAssets:
    """
    Pick the newest source, result and video entries out of a newest-first list.
    With `since`, result and video entries created before it are ignored so an
    earlier job's output is never taken for the current one.
    """
    records = list(records)
    fresh = [a for a in records if _created_since(a, since)]
    before_key = next((a.url for a in records if a.role == "source"), None)
    after_key = next((a.url for a in fresh if a.role == "result"), None)
    video_key = next((a.url for a in fresh if a.type == "video" or a.role in VIDEO_ROLES), None)
    return LatestAssets(
        before_key=before_key,
        after_key=after_key,
        video_key=video_key,
        before_url=resolve_asset_url(before_key, base_url),
        after_url=resolve_asset_url(after_key, base_url),
        video_url=resolve_asset_url(video_key, base_url),
    )


def poll_budget(mode: Mode) -> Tuple[int, float]:
    """(attempts, seconds between attempts) for a mode."""
    if mode == "video":
        return settings.VIDEO_POLL_ATTEMPTS, settings.VIDEO_POLL_INTERVAL
    return settings.PHOTO_POLL_ATTEMPTS, settings.PHOTO_POLL_INTERVAL


class ResultPoller:
    def __init__(
        self,
        store: AssetStore,
        asset_base_url: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.asset_base_url = asset_base_url or settings.ASSET_BASE_URL
        self._sleep = sleep

    async def fetch_latest(self, since: Optional[datetime] = None) -> Optional[LatestAssets]:
        if not self.store.has_scope:
            return None
        try:
            records = await self.store.latest_assets()
        except StoreError as e:
            logger.error("fetch_latest failed: %s", e)
            return None
        return summarize_assets(records, self.asset_base_url, since)

    async def poll_until_ready(
        self, mode: Mode, job_id: str, since: Optional[datetime] = None
    ) -> Optional[LatestAssets]:
        """
        Query the asset store until the mode's result shows up or the attempt
        budget runs out, then do one last query and return whatever is there.
        Queries never overlap. `since` is the submission time of the job.
        """
        attempts, delay = poll_budget(mode)
        logger.info("Polling assets for job %s (%s): %d x %.1fs", job_id, mode, attempts, delay)

        for i in range(attempts):
            latest = await self.fetch_latest(since)
            if latest is None:
                return None
            if latest.has_result(mode):
                logger.info("Job %s: %s result found on attempt %d", job_id, mode, i + 1)
                return latest
            logger.debug("Job %s: no %s result yet (attempt %d/%d)", job_id, mode, i + 1, attempts)
            if i < attempts - 1:
                await self._sleep(delay)

        logger.warning("Job %s: poll budget exhausted, final query", job_id)
        return await self.fetch_latest(since)
