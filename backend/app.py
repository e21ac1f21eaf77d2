# backend/app.py

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from config.settings import settings
from .model import JobRecord, StudioProxyRequest
from .errors import StoreError
from .stores import JobStore

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

# Cloudflare's "origin took too long" status
EDGE_TIMEOUT_STATUS = 524

app = FastAPI(title="Render Studio Service")

job_store = JobStore()


def get_webhook_config(mode: str) -> Tuple[Optional[str], Optional[str]]:
    if mode == "photo":
        return settings.STUDIO_PHOTO_WEBHOOK_URL, settings.STUDIO_PHOTO_SECRET
    return settings.STUDIO_VIDEO_WEBHOOK_URL, settings.STUDIO_VIDEO_SECRET


async def forward_to_webhook(url: str, secret: str, payload: Dict[str, Any]) -> Tuple[int, str]:
    """POST the payload to the n8n webhook, returning (status, raw body)."""
    headers = {"Content-Type": "application/json", "X-Webhook-Signature": secret}
    timeout = aiohttp.ClientTimeout(total=settings.UPSTREAM_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(url, headers=headers, json=payload) as resp:
            return resp.status, await resp.text()


def _accepted(reason: str, upstream_status: Optional[int]) -> JSONResponse:
    return JSONResponse(
        {"status": "accepted", "upstreamStatus": upstream_status, "reason": reason},
        status_code=202,
    )


@app.post("/studio")
async def studio(req: StudioProxyRequest):
    """
    Forward a generation request to the mode's webhook.
    Slow upstreams are reported as 202 accepted: the render keeps going and
    the client picks the result up from the asset store.
    """
    if req.mode not in ("photo", "video"):
        return JSONResponse({"error": "Invalid mode."}, status_code=400)

    url, secret = get_webhook_config(req.mode)
    if not url or not secret:
        logger.error("Webhook configuration missing for %s mode", req.mode)
        return JSONResponse({"error": "Webhook configuration missing."}, status_code=500)

    job_id = (req.payload.get("metadata") or {}).get("job_id")
    try:
        status, raw = await forward_to_webhook(url, secret, req.payload)
    except asyncio.TimeoutError:
        logger.warning("Upstream webhook timed out for job %s", job_id)
        return _accepted("upstream_timeout", None)
    except aiohttp.ClientError as e:
        logger.error("Failed to reach upstream webhook for job %s: %s", job_id, e)
        return JSONResponse({"error": "Failed to reach upstream webhook."}, status_code=502)

    if status == EDGE_TIMEOUT_STATUS:
        logger.warning("Upstream returned %s for job %s; render continues", status, job_id)
        return _accepted("cloudflare_timeout", status)

    try:
        parsed = json.loads(raw) if raw else {}
    except ValueError:
        parsed = {"raw": raw}

    if status >= 400:
        logger.warning("Upstream webhook responded %s for job %s: %.300s", status, job_id, raw)
    return JSONResponse(parsed, status_code=status)


@app.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job(job_id: str):
    """Return the lifecycle record of a submitted job."""
    try:
        record = await job_store.get_job(job_id)
    except StoreError as e:
        logger.error("Job lookup failed for %s: %s", job_id, e)
        raise HTTPException(status_code=503, detail="Job store unavailable")
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return record
