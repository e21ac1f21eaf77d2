import pytest

from backend.errors import ValidationError
from backend.features import FeatureSet
from backend.model import (
    ChoiceValue,
    CompositeValue,
    ImageValue,
    NumericValue,
    OutputPrefs,
    SlotId,
    StudioContext,
    TextValue,
)
from backend.request_builder import build, plan_for_quality, preset_from_ratio, resolution_for

CONTEXT = StudioContext(user_id="user-1", project_id="proj-1", plan="pro")


def _video_set(quality="standard"):
    fs = FeatureSet("video")
    fs.select(SlotId.VIDEO_PROMPT, TextValue(text=" slow pan around the car "))
    fs.select(SlotId.VIDEO_DURATION, NumericValue(number=10))
    fs.select(SlotId.VIDEO_SCALE, ChoiceValue(choice="9:16"))
    fs.select(SlotId.VIDEO_QUALITY, ChoiceValue(choice=quality))
    return fs


def test_photo_payload_maps_wire_keys():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["https://x/rim.png"]))
    fs.select(SlotId.WINDOW, NumericValue(number=35))
    fs.select(SlotId.BACKGROUND, CompositeValue(text="neon city"))

    req = build("photo", fs, "https://x/car.png", OutputPrefs(), "job_1", CONTEXT)
    payload = req.payload()

    assert payload["source_image"] == "https://x/car.png"
    assert payload["images"] == {"rim": "https://x/rim.png"}
    assert payload["instructions"] == {"environment": "neon city", "tint": "35"}
    assert payload["modes"] == ["rim", "environment", "tint"]
    assert payload["metadata"]["job_id"] == "job_1"
    assert payload["metadata"]["plan"] == "pro"
    assert payload["metadata"]["user_id"] == "user-1"


def test_composite_slot_sends_image_and_text():
    fs = FeatureSet("photo")
    fs.select(SlotId.PAINT, CompositeValue(image_url="https://x/swatch.png", text="pearl white"))
    req = build("photo", fs, "car.png", OutputPrefs(), "job_1", CONTEXT)
    assert req.images["paint"] == "https://x/swatch.png"
    assert req.instructions["paint"] == "pearl white"
    assert req.modes == ["paint"]


def test_height_and_multicar():
    fs = FeatureSet("photo")
    fs.select(SlotId.HEIGHT, ChoiceValue(choice="extra-low"))
    fs.select(SlotId.MULTICAR, ImageValue(urls=["a.png", "b.png"]))
    req = build("photo", fs, "car.png", OutputPrefs(), "job_1", CONTEXT)
    assert req.images["multicars"] == ["a.png", "b.png"]
    assert req.modes == ["multicars", "height_extreme_low"]


def test_build_is_deterministic():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["rim.png"]))
    first = build("photo", fs, "car.png", OutputPrefs(), "job_1", CONTEXT)
    second = build("photo", fs, "car.png", OutputPrefs(), "job_1", CONTEXT)
    assert first == second
    assert first.to_wire() == second.to_wire()


def test_request_is_immutable():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["rim.png"]))
    req = build("photo", fs, "car.png", OutputPrefs(), "job_1", CONTEXT)
    with pytest.raises(Exception):
        req.job_id = "job_2"


@pytest.mark.parametrize(
    "ratio, expected",
    [
        (None, "instagram_post"),
        (1.0, "instagram_post"),
        (1.1, "instagram_post"),
        (0.5625, "instagram_story"),
        (1.78, "marketplace_website"),
    ],
)
def test_preset_from_ratio(ratio, expected):
    assert preset_from_ratio(ratio) == expected


@pytest.mark.parametrize(
    "resolution, preset, expected",
    [
        ("1K", "instagram_post", "1024x1024"),
        ("2K", "marketplace_website", "2048x1152"),
        ("4K", "instagram_story", "2304x4096"),
    ],
)
def test_resolution_for(resolution, preset, expected):
    assert resolution_for(resolution, preset) == expected


def test_auto_aspect_uses_measured_source():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["rim.png"]))
    prefs = OutputPrefs(resolution="2K", aspect_ratio="auto", source_aspect_ratio=0.75)
    req = build("photo", fs, "car.png", prefs, "job_1", CONTEXT)
    assert req.aspect_ratio == "9:16"
    assert req.resolution == "1152x2048"


def test_explicit_aspect_preset_wins():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["rim.png"]))
    prefs = OutputPrefs(aspect_ratio="marketplace_website", source_aspect_ratio=0.5)
    req = build("photo", fs, "car.png", prefs, "job_1", CONTEXT)
    assert req.aspect_ratio == "16:9"


def test_video_payload():
    req = build("video", _video_set(), "car.png", None, "job_9", CONTEXT)
    payload = req.payload()
    assert payload == {
        "source_image": "car.png",
        "prompt": "slow pan around the car",
        "duration": "10",
        "plan": "Standard",
        "metadata": {
            "job_id": "job_9",
            "user_id": "user-1",
            "project_id": "proj-1",
            "aspect_ratio": "9:16",
        },
    }
    assert req.to_wire()["mode"] == "video"
    assert req.modes == []
    assert req.instructions == {}


@pytest.mark.parametrize(
    "quality, plan",
    [("draft", "Draft"), ("standard", "Standard"), ("HIGH", "High"), ("ultra", "Draft"), (None, "Draft")],
)
def test_plan_for_quality(quality, plan):
    assert plan_for_quality(quality) == plan


def test_video_missing_scale_is_rejected():
    fs = _video_set()
    fs.clear(SlotId.VIDEO_SCALE)
    with pytest.raises(ValidationError):
        build("video", fs, "car.png", None, "job_1", CONTEXT)


def test_empty_photo_set_is_rejected():
    with pytest.raises(ValidationError):
        build("photo", FeatureSet("photo"), "car.png", OutputPrefs(), "job_1", CONTEXT)


def test_missing_source_is_rejected():
    fs = FeatureSet("photo")
    fs.select(SlotId.RIMS, ImageValue(urls=["rim.png"]))
    with pytest.raises(ValidationError):
        build("photo", fs, "", OutputPrefs(), "job_1", CONTEXT)


def test_mode_mismatch_is_rejected():
    with pytest.raises(ValidationError):
        build("video", FeatureSet("photo"), "car.png", None, "job_1", CONTEXT)
