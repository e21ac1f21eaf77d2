# backend/request_builder.py

from typing import Dict, List, Optional, Union

from .errors import ValidationError
from .features import FeatureSet
from .model import (
    GenerationRequest,
    Mode,
    OutputPrefs,
    SlotId,
    StudioContext,
)

# Editor slot -> key the render workflow expects
WIRE_KEYS: Dict[SlotId, str] = {
    SlotId.PAINT: "paint",
    SlotId.BODYKIT: "bodykit",
    SlotId.RIMS: "rim",
    SlotId.LIVERY: "livery",
    SlotId.WINDOW: "tint",
    SlotId.BACKGROUND: "environment",
    SlotId.ADD_PERSON: "insert_person",
    SlotId.MULTICAR: "multicars",
}

HEIGHT_MODES: Dict[str, str] = {
    "extra-low": "height_extreme_low",
    "low": "height_low",
    "high": "height_high",
    "extra-high": "height_extreme_high",
}

# Order in which contributions are written to the payload
COMPOSITE_ORDER = (SlotId.PAINT, SlotId.BODYKIT)
IMAGE_ORDER = (SlotId.RIMS, SlotId.LIVERY)
TRAILING_COMPOSITE_ORDER = (SlotId.BACKGROUND, SlotId.ADD_PERSON)

ASPECT_PRESETS: Dict[str, str] = {
    "instagram_post": "1:1",
    "instagram_story": "9:16",
    "marketplace_website": "16:9",
}

RESOLUTION_BASE: Dict[str, int] = {"1K": 1024, "2K": 2048, "4K": 4096}

VIDEO_PLANS: Dict[str, str] = {"draft": "Draft", "standard": "Standard", "high": "High"}

SQUARE_TOLERANCE = 0.12


def preset_from_ratio(ratio: Optional[float]) -> str:
    """Pick the closest aspect preset for a measured width/height ratio."""
    if not ratio:
        return "instagram_post"
    if abs(ratio - 1) < SQUARE_TOLERANCE:
        return "instagram_post"
    if ratio < 1:
        return "instagram_story"
    return "marketplace_website"


def resolve_aspect_preset(prefs: OutputPrefs) -> str:
    if prefs.aspect_ratio == "auto":
        return preset_from_ratio(prefs.source_aspect_ratio)
    return prefs.aspect_ratio


def resolution_for(resolution: str, preset: str) -> str:
    base = RESOLUTION_BASE.get(resolution, 1024)
    short = max(1, round(base * 9 / 16))
    if preset == "instagram_post":
        return f"{base}x{base}"
    if preset == "marketplace_website":
        return f"{base}x{short}"
    return f"{short}x{base}"


def plan_for_quality(quality: Optional[str]) -> str:
    return VIDEO_PLANS.get(str(quality or "").strip().lower(), "Draft")


def _format_number(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


def build(
    mode: Mode,
    feature_set: FeatureSet,
    source_asset: str,
    output_prefs: Optional[OutputPrefs] = None,
    job_id: str = "",
    context: Optional[StudioContext] = None,
) -> GenerationRequest:
    """
    Snapshot a FeatureSet into a GenerationRequest.
    Raises ValidationError if the set does not satisfy the mode's selection rule.
    """
    if feature_set.mode != mode:
        raise ValidationError(f"Feature set belongs to {feature_set.mode} mode, not {mode}")
    feature_set.check_ready()
    if not source_asset or not source_asset.strip():
        raise ValidationError("Upload a source image before generating.")
    if not job_id:
        raise ValidationError("A job id is required.")

    context = context or StudioContext()
    if mode == "video":
        return _build_video(feature_set, source_asset.strip(), job_id, context)
    return _build_photo(feature_set, source_asset.strip(), output_prefs or OutputPrefs(), job_id, context)


def _build_photo(
    fs: FeatureSet, source: str, prefs: OutputPrefs, job_id: str, context: StudioContext
) -> GenerationRequest:
    instructions: Dict[str, str] = {}
    images: Dict[str, Union[str, List[str]]] = {}
    modes: List[str] = []

    def mark(sid: SlotId) -> None:
        key = WIRE_KEYS[sid]
        if key not in modes:
            modes.append(key)

    def add_composite(sid: SlotId) -> None:
        if not fs.is_populated(sid):
            return
        value = fs.value(sid)
        key = WIRE_KEYS[sid]
        if value.has_text():
            instructions[key] = value.text.strip()
        if value.has_image():
            images[key] = value.image_url.strip()
        mark(sid)

    def add_image(sid: SlotId) -> None:
        if not fs.is_populated(sid):
            return
        images[WIRE_KEYS[sid]] = fs.value(sid).url
        mark(sid)

    for sid in COMPOSITE_ORDER:
        add_composite(sid)
    for sid in IMAGE_ORDER:
        add_image(sid)
    for sid in TRAILING_COMPOSITE_ORDER:
        add_composite(sid)

    if fs.is_populated(SlotId.MULTICAR):
        images[WIRE_KEYS[SlotId.MULTICAR]] = [u.strip() for u in fs.value(SlotId.MULTICAR).urls if u and u.strip()]
        mark(SlotId.MULTICAR)

    if fs.is_populated(SlotId.HEIGHT):
        height_mode = HEIGHT_MODES.get(fs.value(SlotId.HEIGHT).choice.strip().lower())
        if height_mode and height_mode not in modes:
            modes.append(height_mode)

    if fs.is_populated(SlotId.WINDOW):
        instructions[WIRE_KEYS[SlotId.WINDOW]] = _format_number(fs.value(SlotId.WINDOW).number)
        mark(SlotId.WINDOW)

    preset = resolve_aspect_preset(prefs)
    return GenerationRequest(
        job_id=job_id,
        mode="photo",
        source_image=source,
        user_id=context.user_id,
        project_id=context.project_id,
        plan=context.plan or "free",
        aspect_ratio=ASPECT_PRESETS[preset],
        resolution=resolution_for(prefs.resolution, preset),
        modes=modes,
        instructions=instructions,
        images=images,
    )


def _build_video(fs: FeatureSet, source: str, job_id: str, context: StudioContext) -> GenerationRequest:
    prompt = fs.value(SlotId.VIDEO_PROMPT).text.strip()
    duration = _format_number(fs.value(SlotId.VIDEO_DURATION).number)
    scale = fs.value(SlotId.VIDEO_SCALE).choice.strip()
    quality = fs.value(SlotId.VIDEO_QUALITY).choice.strip()

    return GenerationRequest(
        job_id=job_id,
        mode="video",
        source_image=source,
        user_id=context.user_id,
        project_id=context.project_id,
        plan=plan_for_quality(quality),
        aspect_ratio=scale or "16:9",
        prompt=prompt,
        duration=duration,
    )
