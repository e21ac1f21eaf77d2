# backend/studio.py
"""
One editing session: feature selection, submit -> dispatch -> poll -> sync,
and the view state the editor renders.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

import httpx

from config.settings import settings

from .errors import (
    DispatchFailure,
    GenerationTimeout,
    MissingContextError,
    ModeSwitchLocked,
    PersistenceWarning,
    StoreError,
    ValidationError,
)
from .features import FeatureStore
from .gallery import Gallery
from .model import (
    FeatureSlot,
    GenerationRequest,
    LatestAssets,
    Mode,
    NormalizedResult,
    OutputPrefs,
    StudioContext,
    View,
)
from .poller import ResultPoller
from .render_client import RenderDispatcher
from .request_builder import build
from .state import GenerationState, GenerationStateMachine
from .stores import AssetStore, JobStore
from .utils import fetch_aspect_ratio, gen_job_id, resolve_asset_url

logger = logging.getLogger(__name__)

JOB_CREATE_FAILED = "Failed to create job. Please try again."
RENDER_FAILED = "Render failed. Please try again."
PHOTO_TIMEOUT = "Render is still processing. Please try again in a few minutes."
VIDEO_TIMEOUT = "Video render is still processing. Please try again in a few minutes."


class StudioSession:
    def __init__(
        self,
        context: StudioContext,
        dispatcher: Optional[RenderDispatcher] = None,
        jobs: Optional[JobStore] = None,
        assets: Optional[AssetStore] = None,
        poller: Optional[ResultPoller] = None,
        gallery: Optional[Gallery] = None,
        mode: Mode = "photo",
        prefs: Optional[OutputPrefs] = None,
        job_id_factory: Callable[[], str] = gen_job_id,
        measure_source: Callable[[str], Awaitable[Optional[float]]] = fetch_aspect_ratio,
    ):
        self.context = context
        self.dispatcher = dispatcher or RenderDispatcher()
        self.jobs = jobs or JobStore()
        self.assets = assets or AssetStore(context.user_id, context.project_id)
        self.poller = poller or ResultPoller(self.assets)
        self.gallery = gallery or Gallery()
        self.mode: Mode = mode
        self.prefs = prefs or OutputPrefs()
        self.features = FeatureStore()
        self.machine = GenerationStateMachine()
        self.credit_cost = settings.CREDIT_COST_START
        self.last_request: Optional[GenerationRequest] = None
        self.last_warnings: List[PersistenceWarning] = []
        self._job_id_factory = job_id_factory
        self._measure_source = measure_source
        self._settled_jobs: set = set()
        self._used_job_ids: set = set()

    # -- selection -------------------------------------------------------

    @property
    def current_features(self):
        return self.features.for_mode(self.mode)

    def select(self, slot_id, value) -> FeatureSlot:
        return self.current_features.select(slot_id, value)

    def clear(self, slot_id) -> None:
        self.current_features.clear(slot_id)

    def switch_mode(self, mode: Mode) -> None:
        if self.machine.locks_mode_switch(mode):
            raise ModeSwitchLocked("Wait for the video render to finish before switching to photo mode.")
        if mode == self.mode:
            return
        logger.info("Switching studio mode %s -> %s", self.mode, mode)
        self.features.reset(self.mode)
        self.gallery.enter_mode(mode)
        self.mode = mode

    def can_generate(self) -> bool:
        if self.machine.is_loading:
            return False
        try:
            self.current_features.check_ready()
        except ValidationError:
            return False
        return True

    # -- view ------------------------------------------------------------

    def view(self, view: View) -> None:
        self.gallery.view(view)

    def can_upscale(self) -> bool:
        return self.gallery.offers_upscale(self.mode)

    def upscale(self) -> bool:
        """Upscale action of the editor: brings the result back into view. False while the gate is locked."""
        if not self.can_upscale():
            return False
        self.view("after")
        return True

    async def load_source(self, url_or_key: str, record: bool = True) -> str:
        """A new source image: clears the gallery, both feature sets and the gate."""
        url = resolve_asset_url(url_or_key, self.poller.asset_base_url)
        if not url:
            raise MissingContextError("No source image given.")

        if record:
            await self._side_effect("record source asset", self.assets.record_source_asset(url_or_key))

        self.gallery.load_source(url)
        self.features.reset()

        try:
            self.prefs.source_aspect_ratio = await self._measure_source(url)
        except httpx.HTTPError as e:
            logger.warning("Could not measure source image %s: %s", url, e)
            self.prefs.source_aspect_ratio = None
        return url

    # -- generation ------------------------------------------------------

    async def submit(self) -> GenerationState:
        """
        Build, dispatch and (if needed) poll for one job. A submit while a job
        is loading does nothing. Validation problems raise before anything is
        sent; everything after that ends in a state machine state.
        """
        if self.machine.is_loading:
            logger.info("Submit ignored: job %s still loading", self.machine.job_id)
            return self.machine.state

        if not self.context.user_id or not self.context.project_id:
            raise MissingContextError("Missing project context. Please refresh and try again.")

        mode = self.mode
        source = self.gallery.photo_source() if mode == "photo" else self.gallery.video_source()
        job_id = self._next_job_id()
        request = build(mode, self.features.for_mode(mode), source, self.prefs, job_id, self.context)

        # entered before the first await so a concurrent submit sees it
        self.machine.begin(mode, job_id)
        self.last_request = request
        self.last_warnings = []

        try:
            await self._run(request)
        except GenerationTimeout as e:
            self.machine.time_out(str(e))
        except Exception as e:
            logger.exception("Job %s failed unexpectedly: %s", job_id, e)
            if self.machine.is_loading:
                self.machine.fail(RENDER_FAILED)
        return self.machine.state

    def _next_job_id(self) -> str:
        job_id = self._job_id_factory()
        while job_id in self._used_job_ids:
            job_id = self._job_id_factory()
        self._used_job_ids.add(job_id)
        return job_id

    async def retry(self) -> GenerationState:
        """Re-submit after an error or timeout with a fresh job id."""
        if not self.machine.is_settled_with_problem:
            return self.machine.state
        return await self.submit()

    def dismiss(self) -> None:
        self.machine.dismiss()

    async def _run(self, request: GenerationRequest) -> None:
        mode, job_id = request.mode, request.job_id
        # only assets written from here on can belong to this job
        submitted_at = datetime.now(timezone.utc)

        try:
            await self.jobs.create_job(job_id, self.context.project_id, mode)
        except StoreError as e:
            logger.error("create_job failed for %s: %s", job_id, e)
            self.machine.fail(JOB_CREATE_FAILED)
            return

        try:
            result = await self.dispatcher.dispatch(request)
        except DispatchFailure as e:
            logger.error("Dispatch failed for job %s: %s", job_id, e)
            self.machine.fail(RENDER_FAILED)
            return

        if not result.success:
            logger.warning("Render backend reported failure for job %s", job_id)
            self.machine.fail(RENDER_FAILED)
            return

        if mode == "video":
            await self._side_effect("update project type", self.assets.update_project_type("video"))

        latest: Optional[LatestAssets] = None
        if not result.has_result(mode):
            latest = await self.poller.poll_until_ready(mode, job_id, since=submitted_at)

        if not result.has_result(mode) and not (latest and latest.has_result(mode)):
            logger.warning("Job %s: no %s result after dispatch and polling", job_id, mode)
            raise GenerationTimeout(VIDEO_TIMEOUT if mode == "video" else PHOTO_TIMEOUT)

        await self._settle(request, result, latest)

    async def _settle(
        self, request: GenerationRequest, result: NormalizedResult, latest: Optional[LatestAssets]
    ) -> None:
        mode, job_id = request.mode, request.job_id
        if job_id in self._settled_jobs:
            return
        self._settled_jobs.add(job_id)

        if mode == "video":
            video_url = result.video_url or latest.video_url
            if result.video_raw:
                await self._side_effect("persist result asset", self.assets.persist_result_asset(result.video_raw, "video"))
            self.gallery.reconcile_video(video_url, latest)
        else:
            after_url = result.after_url or latest.after_url
            after_key = result.after_raw or latest.after_key
            if result.after_raw:
                await self._side_effect("persist result asset", self.assets.persist_result_asset(result.after_raw, "photo"))
            if after_key:
                await self._side_effect("update project thumbnail", self.assets.update_project_thumbnail(after_key))
            self.gallery.reconcile_photo(after_url, latest)

        await self._side_effect("mark job completed", self.jobs.mark_job_completed(job_id))

        self.credit_cost = max(settings.CREDIT_COST_FLOOR, self.credit_cost - settings.CREDIT_COST_STEP)
        self.features.reset(mode)
        self.machine.succeed()
        logger.info("Job %s settled (%s)", job_id, mode)

    async def _side_effect(self, label: str, coro) -> None:
        try:
            await coro
        except StoreError as e:
            warning = PersistenceWarning(f"{label} failed: {e}")
            self.last_warnings.append(warning)
            logger.warning("%s", warning)
