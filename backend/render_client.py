# backend/render_client.py
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from config.settings import settings

from .errors import DispatchFailure
from .model import GenerationRequest, NormalizedResult
from .utils import resolve_asset_url

logger = logging.getLogger(__name__)

# Statuses meaning "the job reached the backend but the answer is not back yet".
# 524 is the edge proxy giving up on a slow origin; 202 is the studio proxy
# reporting the same thing; 504/408 are the gateway flavours of it.
ACCEPTED_STATUSES = frozenset({202, 408, 504, 524})

NESTED_KEYS = ("data", "result", "output")

BEFORE_FIELDS = ("beforeImage", "before_image")
AFTER_FIELDS = ("afterImage", "after_image", "result_url", "resultUrl", "output_url")
VIDEO_FIELDS = ("video_result_url", "videoResultUrl")


def _extract_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first(sources: Tuple[Dict[str, Any], ...], fields: Tuple[str, ...]) -> Optional[str]:
    for source in sources:
        for field in fields:
            found = _extract_string(source.get(field))
            if found:
                return found
    return None


def normalize_response(
    body: Any,
    resolve: Optional[Callable[[Optional[str]], Optional[str]]] = None,
) -> NormalizedResult:
    """
    Map any of the historical response shapes onto one NormalizedResult.

    Fields may sit at the top level or one level down under data/result/output;
    top-level values win.
    """
    if resolve is None:
        resolve = lambda value: resolve_asset_url(value, settings.ASSET_BASE_URL)  # noqa: E731

    response: Dict[str, Any] = body if isinstance(body, dict) else {}
    nested: Dict[str, Any] = {}
    for key in NESTED_KEYS:
        candidate = response.get(key)
        if candidate is not None:
            nested = candidate if isinstance(candidate, dict) else {}
            break
    sources = (response, nested)

    before_raw = _first(sources, BEFORE_FIELDS)
    after_raw = _first(sources, AFTER_FIELDS)
    video_raw = _first(sources, VIDEO_FIELDS)

    success_field = response.get("success")
    if isinstance(success_field, bool):
        success = success_field
    else:
        success = not bool(response.get("error"))

    return NormalizedResult(
        success=success,
        before_raw=before_raw,
        after_raw=after_raw,
        video_raw=video_raw,
        before_url=resolve(before_raw),
        after_url=resolve(after_raw),
        video_url=resolve(video_raw),
    )


def _is_accepted_body(body: Any) -> bool:
    return isinstance(body, dict) and str(body.get("status", "")).lower() == "accepted"


class RenderDispatcher:
    """
    Sends one GenerationRequest to the studio endpoint under a wall-clock budget.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        timeout: Optional[float] = None,
        asset_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint_url = endpoint_url or settings.STUDIO_ENDPOINT_URL
        self.timeout = timeout if timeout is not None else settings.DISPATCH_TIMEOUT
        self.asset_base_url = asset_base_url or settings.ASSET_BASE_URL
        self._transport = transport

    def _resolve(self, value: Optional[str]) -> Optional[str]:
        return resolve_asset_url(value, self.asset_base_url)

    async def _post(self, client: httpx.AsyncClient, request: GenerationRequest) -> httpx.Response:
        return await client.post(self.endpoint_url, json=request.to_wire())

    async def dispatch(self, request: GenerationRequest) -> NormalizedResult:
        logger.info("Dispatching job %s (%s) to %s", request.job_id, request.mode, self.endpoint_url)

        # httpx gets a little slack so the budget below is what fires first
        async with httpx.AsyncClient(timeout=self.timeout + 5, transport=self._transport) as client:
            try:
                r = await asyncio.wait_for(self._post(client, request), timeout=self.timeout)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                logger.warning(
                    "Render request for job %s exceeded %.0fs; continuing via asset sync",
                    request.job_id,
                    self.timeout,
                )
                return NormalizedResult(accepted=True)
            except httpx.HTTPError as e:
                logger.error("Render request for job %s failed: %s", request.job_id, e)
                raise DispatchFailure(f"Failed to reach render endpoint: {e}") from e

        if r.status_code in ACCEPTED_STATUSES:
            logger.info("Job %s accepted upstream (HTTP %s), result pending", request.job_id, r.status_code)
            return NormalizedResult(accepted=True)

        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = {"raw": r.text}

        if r.status_code >= 400:
            logger.error("Render endpoint returned %s for job %s: %s", r.status_code, request.job_id, r.text[:500])
            raise DispatchFailure(f"Render endpoint returned HTTP {r.status_code}", status_code=r.status_code)

        if _is_accepted_body(body):
            logger.info("Job %s accepted upstream (%s), result pending", request.job_id, body.get("reason"))
            return NormalizedResult(accepted=True)

        result = normalize_response(body, self._resolve)
        if result.success and not result.has_result(request.mode):
            # a success with nothing attached still means "go look in the asset store"
            result = result.model_copy(update={"accepted": True})
        logger.info(
            "Job %s responded: success=%s after=%s video=%s",
            request.job_id,
            result.success,
            result.after_url,
            result.video_url,
        )
        return result
