# backend/model.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Mode = Literal["photo", "video"]

View = Literal["before", "after"]

JobStatus = Literal["pending", "completed"]


class SlotId(str, Enum):
    PAINT = "paint"
    BODYKIT = "bodykit"
    RIMS = "rims"
    HEIGHT = "height"
    LIVERY = "livery"
    WINDOW = "window"
    BACKGROUND = "background"
    ADD_PERSON = "addPerson"
    MULTICAR = "multicar"
    VIDEO_PROMPT = "videoPrompt"
    VIDEO_DURATION = "videoDuration"
    VIDEO_SCALE = "videoScale"
    VIDEO_QUALITY = "videoQuality"


class SlotKind(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    NUMERIC = "numeric"
    CHOICE = "choice"
    COMPOSITE = "composite"


def _filled(text: Optional[str]) -> bool:
    return bool(text and text.strip())


class ImageValue(BaseModel):
    kind: Literal["image"] = "image"
    urls: List[str] = Field(default_factory=list)

    @property
    def url(self) -> Optional[str]:
        # the most recently added reference is the one a single-image slot uses
        filled = [u.strip() for u in self.urls if _filled(u)]
        return filled[-1] if filled else None

    def is_filled(self) -> bool:
        return any(_filled(u) for u in self.urls)


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    text: str = ""

    def is_filled(self) -> bool:
        return _filled(self.text)


class NumericValue(BaseModel):
    kind: Literal["numeric"] = "numeric"
    number: Optional[float] = None

    def is_filled(self) -> bool:
        return self.number is not None


class ChoiceValue(BaseModel):
    kind: Literal["choice"] = "choice"
    choice: str = ""

    def is_filled(self) -> bool:
        return _filled(self.choice)


class CompositeValue(BaseModel):
    kind: Literal["composite"] = "composite"
    image_url: Optional[str] = None
    text: Optional[str] = None

    def has_image(self) -> bool:
        return _filled(self.image_url)

    def has_text(self) -> bool:
        return _filled(self.text)

    def is_filled(self) -> bool:
        return self.has_image() or self.has_text()


SlotValue = Annotated[
    Union[ImageValue, TextValue, NumericValue, ChoiceValue, CompositeValue],
    Field(discriminator="kind"),
]


class FeatureSlot(BaseModel):
    id: SlotId
    kind: SlotKind
    value: Optional[SlotValue] = None


class OutputPrefs(BaseModel):
    """Photo output preferences. Video takes its output settings from its slots."""

    resolution: Literal["1K", "2K", "4K"] = "1K"
    aspect_ratio: Literal["auto", "instagram_post", "instagram_story", "marketplace_website"] = "auto"
    # width / height of the source image, when it could be measured
    source_aspect_ratio: Optional[float] = None


class StudioContext(BaseModel):
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    plan: str = "free"


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    mode: Mode
    source_image: str
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    plan: str
    aspect_ratio: str
    modes: List[str] = Field(default_factory=list)
    instructions: Dict[str, str] = Field(default_factory=dict)
    images: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    resolution: Optional[str] = None
    prompt: Optional[str] = None
    duration: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        if self.mode == "video":
            return {
                "source_image": self.source_image,
                "prompt": self.prompt or "",
                "duration": self.duration or "",
                "plan": self.plan,
                "metadata": {
                    "job_id": self.job_id,
                    "user_id": self.user_id,
                    "project_id": self.project_id,
                    "aspect_ratio": self.aspect_ratio,
                },
            }
        return {
            "event": f"studio.{self.mode}.mode.activated",
            "source_image": self.source_image,
            "modes": list(self.modes),
            "instructions": dict(self.instructions),
            "images": dict(self.images),
            "metadata": {
                "job_id": self.job_id,
                "user_id": self.user_id,
                "project_id": self.project_id,
                "plan": self.plan,
                "aspect_ratio": self.aspect_ratio,
                "resolution": self.resolution,
            },
        }

    def to_wire(self) -> Dict[str, Any]:
        return {"mode": self.mode, "payload": self.payload()}


class NormalizedResult(BaseModel):
    success: bool = True
    # job was handed off but the endpoint had nothing to return yet
    accepted: bool = False
    before_raw: Optional[str] = None
    after_raw: Optional[str] = None
    video_raw: Optional[str] = None
    before_url: Optional[str] = None
    after_url: Optional[str] = None
    video_url: Optional[str] = None

    def has_result(self, mode: Mode) -> bool:
        return bool(self.video_url if mode == "video" else self.after_url)


class AssetRecord(BaseModel):
    url: str
    role: str
    type: str = "image"
    created_at: str


class LatestAssets(BaseModel):
    before_key: Optional[str] = None
    after_key: Optional[str] = None
    video_key: Optional[str] = None
    before_url: Optional[str] = None
    after_url: Optional[str] = None
    video_url: Optional[str] = None

    def has_result(self, mode: Mode) -> bool:
        return bool(self.video_url if mode == "video" else self.after_url)


class JobRecord(BaseModel):
    job_id: str
    project_id: Optional[str] = None
    mode: Optional[Mode] = None
    status: JobStatus = "pending"
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class StudioProxyRequest(BaseModel):
    mode: str
    payload: Dict[str, Any] = Field(default_factory=dict)
