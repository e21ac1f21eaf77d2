# backend/gallery.py
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .model import LatestAssets, Mode, View


class UpscaleGateState(str, Enum):
    INITIAL = "initial"
    WENT_TO_BEFORE = "wentToBefore"
    UNLOCKED = "unlocked"


class UpscaleGate:
    """
    Upscale is only offered after the user has looked at "before" and come
    back to "after". Any new "after" image locks it again.
    """

    def __init__(self):
        self.state = UpscaleGateState.INITIAL

    def on_view(self, view: View) -> UpscaleGateState:
        if self.state == UpscaleGateState.UNLOCKED:
            return self.state
        if view == "before":
            self.state = UpscaleGateState.WENT_TO_BEFORE
        elif view == "after" and self.state == UpscaleGateState.WENT_TO_BEFORE:
            self.state = UpscaleGateState.UNLOCKED
        return self.state

    def reset(self) -> None:
        self.state = UpscaleGateState.INITIAL

    @property
    def unlocked(self) -> bool:
        return self.state == UpscaleGateState.UNLOCKED


class GalleryState(BaseModel):
    before: str = ""
    after: str = ""
    current_view: View = "before"
    video_result_url: str = ""


class Gallery:
    """The visible before/after pair. `after` only changes through reconcile_* or a new source."""

    def __init__(self, state: Optional[GalleryState] = None, gate: Optional[UpscaleGate] = None):
        self.state = state or GalleryState()
        self.gate = gate or UpscaleGate()

    @property
    def before(self) -> str:
        return self.state.before

    @property
    def after(self) -> str:
        return self.state.after

    @property
    def current_view(self) -> View:
        return self.state.current_view

    def _set_after(self, after: str) -> None:
        if after != self.state.after:
            self.gate.reset()
        self.state.after = after

    def view(self, view: View) -> None:
        self.state.current_view = view
        self.gate.on_view(view)

    def load_source(self, url: str) -> None:
        self.state.before = url
        self._set_after("")
        self.state.video_result_url = ""
        self.gate.reset()
        self.state.current_view = "before"

    def reconcile_photo(self, after_url: str, latest: Optional[LatestAssets] = None) -> None:
        """
        Show a finished photo result. The previous result becomes the new
        "before" so successive edits chain.
        """
        previous_after = self.state.after
        if previous_after:
            self.state.before = previous_after
        elif latest is not None and latest.before_url:
            self.state.before = latest.before_url
        self._set_after(after_url)
        self.state.current_view = "after"

    def reconcile_video(self, video_url: str, latest: Optional[LatestAssets] = None) -> None:
        if latest is not None and latest.before_url:
            self.state.before = latest.before_url
        self.state.video_result_url = video_url

    def enter_mode(self, mode: Mode) -> None:
        """Entering video locks upscale again; entering photo drops the video result."""
        if mode == "video":
            self.gate.reset()
        else:
            self.state.video_result_url = ""
            self.state.current_view = "after" if self.state.after else "before"

    def photo_source(self) -> str:
        """The image the next photo edit starts from."""
        return self.state.after or self.state.before

    def video_source(self) -> str:
        return self.state.after or self.state.before

    def offers_upscale(self, mode: Mode) -> bool:
        return mode == "photo" and self.gate.unlocked and bool(self.state.after)
