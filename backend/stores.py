# backend/stores.py
"""
Redis-backed collaborators: job lifecycle records, the per-project asset
list and project metadata.

Layout:
    job:{job_id}                      JSON JobRecord
    assets:{user_id}:{project_id}     list of JSON AssetRecord, newest first
    project:{project_id}              hash (thumbnail_url, type, updated_at)
"""

import json
import logging
from typing import Awaitable, Callable, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError as ModelValidationError

from config.settings import settings

from .errors import StoreError
from .model import AssetRecord, JobRecord, Mode
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "job:"          # job:{job_id}
ASSETS_KEY_PREFIX = "assets:"    # assets:{user_id}:{project_id}
PROJECT_KEY_PREFIX = "project:"  # project:{project_id}

# Keep the per-project list bounded
MAX_ASSETS_PER_PROJECT = 200

RedisFactory = Callable[[], Awaitable[redis.Redis]]


async def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


class JobStore:
    def __init__(self, client_factory: RedisFactory = get_redis_client):
        self._client_factory = client_factory

    async def create_job(self, job_id: str, project_id: str, mode: Mode) -> JobRecord:
        record = JobRecord(job_id=job_id, project_id=project_id, mode=mode, created_at=utc_now_iso())
        try:
            rds = await self._client_factory()
            created = await rds.set(f"{JOB_KEY_PREFIX}{job_id}", record.model_dump_json(), nx=True)
        except redis.RedisError as e:
            raise StoreError(f"create_job failed: {e}") from e
        if not created:
            raise StoreError(f"Job id {job_id} already exists")
        return record

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        try:
            rds = await self._client_factory()
            data = await rds.get(f"{JOB_KEY_PREFIX}{job_id}")
        except redis.RedisError as e:
            raise StoreError(f"get_job failed: {e}") from e
        if not data:
            return None
        return JobRecord.model_validate_json(data)

    async def mark_job_completed(self, job_id: str) -> JobRecord:
        record = await self.get_job(job_id)
        if record is None:
            raise StoreError(f"Job {job_id} does not exist")
        record = record.model_copy(update={"status": "completed", "completed_at": utc_now_iso()})
        try:
            rds = await self._client_factory()
            await rds.set(f"{JOB_KEY_PREFIX}{job_id}", record.model_dump_json())
        except redis.RedisError as e:
            raise StoreError(f"mark_job_completed failed: {e}") from e
        return record


class AssetStore:
    """Assets and project metadata for one user/project scope."""

    def __init__(
        self,
        user_id: Optional[str],
        project_id: Optional[str],
        client_factory: RedisFactory = get_redis_client,
    ):
        self.user_id = user_id
        self.project_id = project_id
        self._client_factory = client_factory

    @property
    def has_scope(self) -> bool:
        return bool(self.user_id and self.project_id)

    @property
    def assets_key(self) -> str:
        return f"{ASSETS_KEY_PREFIX}{self.user_id}:{self.project_id}"

    @property
    def project_key(self) -> str:
        return f"{PROJECT_KEY_PREFIX}{self.project_id}"

    def _require_scope(self) -> None:
        if not self.has_scope:
            raise StoreError("Missing user or project scope")

    async def latest_assets(self, limit: Optional[int] = None) -> List[AssetRecord]:
        """Newest first."""
        self._require_scope()
        limit = limit or settings.ASSET_QUERY_LIMIT
        try:
            rds = await self._client_factory()
            rows = await rds.lrange(self.assets_key, 0, limit - 1)
        except redis.RedisError as e:
            raise StoreError(f"asset query failed: {e}") from e

        records: List[AssetRecord] = []
        for row in rows:
            try:
                records.append(AssetRecord.model_validate(json.loads(row)))
            except (ValueError, ModelValidationError):
                logger.warning("Skipping malformed asset row in %s: %.200s", self.assets_key, row)
        return records

    async def _push_asset(self, url_or_key: str, role: str, asset_type: str) -> Optional[AssetRecord]:
        self._require_scope()
        trimmed = url_or_key.strip()
        if not trimmed:
            return None
        record = AssetRecord(url=trimmed, role=role, type=asset_type, created_at=utc_now_iso())
        try:
            rds = await self._client_factory()
            await rds.lpush(self.assets_key, record.model_dump_json())
            await rds.ltrim(self.assets_key, 0, MAX_ASSETS_PER_PROJECT - 1)
        except redis.RedisError as e:
            raise StoreError(f"persist {role} asset failed: {e}") from e
        return record

    async def record_source_asset(self, url_or_key: str) -> Optional[AssetRecord]:
        return await self._push_asset(url_or_key, "source", "image")

    async def persist_result_asset(self, url_or_key: str, mode: Mode = "photo") -> Optional[AssetRecord]:
        if mode == "video":
            return await self._push_asset(url_or_key, "video_result", "video")
        return await self._push_asset(url_or_key, "result", "image")

    async def _update_project(self, **fields: str) -> None:
        self._require_scope()
        fields["updated_at"] = utc_now_iso()
        try:
            rds = await self._client_factory()
            await rds.hset(self.project_key, mapping=fields)
        except redis.RedisError as e:
            raise StoreError(f"project update failed: {e}") from e

    async def update_project_thumbnail(self, url_or_key: str) -> None:
        trimmed = url_or_key.strip()
        if trimmed:
            await self._update_project(thumbnail_url=trimmed)

    async def update_project_type(self, mode: Mode) -> None:
        await self._update_project(type=mode)
