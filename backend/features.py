# backend/features.py
"""
Per-mode feature selection bookkeeping.

Each mode (photo, video) owns its own FeatureSet. A slot is "selected"
exactly when its value carries something; there is no separate flag.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .errors import SelectionLimitError, ValidationError
from .model import (
    ChoiceValue,
    CompositeValue,
    FeatureSlot,
    ImageValue,
    Mode,
    NumericValue,
    SlotId,
    SlotKind,
    TextValue,
)

logger = logging.getLogger(__name__)

MAX_PHOTO_FEATURES = 3

PHOTO_SLOTS: Dict[SlotId, SlotKind] = {
    SlotId.PAINT: SlotKind.COMPOSITE,
    SlotId.BODYKIT: SlotKind.COMPOSITE,
    SlotId.RIMS: SlotKind.IMAGE,
    SlotId.HEIGHT: SlotKind.CHOICE,
    SlotId.LIVERY: SlotKind.IMAGE,
    SlotId.WINDOW: SlotKind.NUMERIC,
    SlotId.BACKGROUND: SlotKind.COMPOSITE,
    SlotId.ADD_PERSON: SlotKind.COMPOSITE,
    SlotId.MULTICAR: SlotKind.IMAGE,
}

VIDEO_SLOTS: Dict[SlotId, SlotKind] = {
    SlotId.VIDEO_PROMPT: SlotKind.TEXT,
    SlotId.VIDEO_DURATION: SlotKind.NUMERIC,
    SlotId.VIDEO_SCALE: SlotKind.CHOICE,
    SlotId.VIDEO_QUALITY: SlotKind.CHOICE,
}

# Not counted against the photo cap
CAP_EXEMPT = frozenset({SlotId.ADD_PERSON})

# Slots that keep every reference instead of only the latest one
MULTI_REFERENCE = frozenset({SlotId.MULTICAR})

CHOICES: Dict[SlotId, Tuple[str, ...]] = {
    SlotId.HEIGHT: ("extra-low", "low", "high", "extra-high"),
    SlotId.VIDEO_SCALE: ("16:9", "9:16", "1:1"),
    SlotId.VIDEO_QUALITY: ("draft", "standard", "high"),
}

NUMERIC_RANGES: Dict[SlotId, Tuple[float, ...]] = {
    SlotId.WINDOW: (0, 100),
}

ALLOWED_NUMBERS: Dict[SlotId, Tuple[float, ...]] = {
    SlotId.VIDEO_DURATION: (5, 10),
}

_VALUE_TYPES = {
    SlotKind.IMAGE: ImageValue,
    SlotKind.TEXT: TextValue,
    SlotKind.NUMERIC: NumericValue,
    SlotKind.CHOICE: ChoiceValue,
    SlotKind.COMPOSITE: CompositeValue,
}


def slots_for(mode: Mode) -> Dict[SlotId, SlotKind]:
    return PHOTO_SLOTS if mode == "photo" else VIDEO_SLOTS


class FeatureSet:
    def __init__(self, mode: Mode):
        self.mode = mode
        self._slots: Dict[SlotId, FeatureSlot] = {}
        self.reset_all()

    def __contains__(self, slot_id) -> bool:
        try:
            return SlotId(slot_id) in self._slots
        except ValueError:
            return False

    def __getitem__(self, slot_id) -> FeatureSlot:
        return self._slots[self._slot_id(slot_id)]

    def _slot_id(self, slot_id) -> SlotId:
        try:
            sid = SlotId(slot_id)
        except ValueError:
            raise ValidationError(f"Unknown feature: {slot_id}")
        if sid not in self._slots:
            raise ValidationError(f"Feature {sid.value} is not available in {self.mode} mode")
        return sid

    def value(self, slot_id):
        return self[slot_id].value

    def reset_all(self) -> None:
        self._slots = {sid: FeatureSlot(id=sid, kind=kind) for sid, kind in slots_for(self.mode).items()}

    def clear(self, slot_id) -> None:
        sid = self._slot_id(slot_id)
        self._slots[sid] = FeatureSlot(id=sid, kind=self._slots[sid].kind)

    def is_populated(self, slot_id) -> bool:
        slot = self[slot_id]
        value = slot.value
        if value is None:
            return False
        if slot.id == SlotId.ADD_PERSON:
            # a person needs both a reference image and a placement instruction
            return value.has_image() and value.has_text()
        return value.is_filled()

    def populated_ids(self) -> List[SlotId]:
        return [sid for sid in self._slots if self.is_populated(sid)]

    def selected_count(self) -> int:
        """Populated slots that count against the photo cap."""
        return len([sid for sid in self.populated_ids() if sid not in CAP_EXEMPT])

    def select(self, slot_id, value) -> FeatureSlot:
        sid = self._slot_id(slot_id)
        slot = self._slots[sid]
        expected = _VALUE_TYPES[slot.kind]
        if not isinstance(value, expected):
            raise ValidationError(
                f"Feature {sid.value} expects a {slot.kind.value} value, got {type(value).__name__}"
            )
        value = self._merge(slot, value)
        self._check_shape(sid, value)

        if (
            self.mode == "photo"
            and sid not in CAP_EXEMPT
            and value.is_filled()
            and not self.is_populated(sid)
            and self.selected_count() >= MAX_PHOTO_FEATURES
        ):
            logger.info("Rejected %s: %d features already selected", sid.value, MAX_PHOTO_FEATURES)
            raise SelectionLimitError(MAX_PHOTO_FEATURES)

        if not value.is_filled():
            self.clear(sid)
        else:
            self._slots[sid] = FeatureSlot(id=sid, kind=slot.kind, value=value)
        return self._slots[sid]

    def check_ready(self) -> None:
        """Raise ValidationError unless the set can be submitted."""
        populated = self.populated_ids()
        if self.mode == "video":
            missing = [sid.value for sid in VIDEO_SLOTS if sid not in populated]
            if missing:
                raise ValidationError(
                    "Select Prompt, Duration, Scale, and Quality to generate a video. "
                    f"Missing: {', '.join(missing)}"
                )
            return
        if not populated:
            raise ValidationError("Select at least one feature to generate.")
        if self.selected_count() > MAX_PHOTO_FEATURES:
            raise SelectionLimitError(MAX_PHOTO_FEATURES)

    @staticmethod
    def _merge(slot: FeatureSlot, value):
        current = slot.value
        if current is None:
            return value
        if isinstance(value, CompositeValue):
            # image and text contributions arrive separately from the editor
            return CompositeValue(
                image_url=value.image_url if value.image_url is not None else current.image_url,
                text=value.text if value.text is not None else current.text,
            )
        return value

    @staticmethod
    def _check_shape(sid: SlotId, value) -> None:
        if isinstance(value, ImageValue):
            if sid not in MULTI_REFERENCE and len([u for u in value.urls if u and u.strip()]) > 1:
                raise ValidationError(f"Feature {sid.value} takes a single reference image")
        elif isinstance(value, ChoiceValue):
            allowed = CHOICES.get(sid)
            if value.is_filled() and allowed and value.choice.strip().lower() not in allowed:
                raise ValidationError(f"Invalid choice for {sid.value}: {value.choice}")
        elif isinstance(value, NumericValue) and value.number is not None:
            if sid in ALLOWED_NUMBERS and value.number not in ALLOWED_NUMBERS[sid]:
                raise ValidationError(f"Invalid value for {sid.value}: {value.number:g}")
            if sid in NUMERIC_RANGES:
                low, high = NUMERIC_RANGES[sid]
                if not low <= value.number <= high:
                    raise ValidationError(f"{sid.value} must be between {low:g} and {high:g}")


class FeatureStore:
    """One FeatureSet per mode; touching one never touches the other."""

    def __init__(self):
        self._sets: Dict[str, FeatureSet] = {"photo": FeatureSet("photo"), "video": FeatureSet("video")}

    @property
    def photo(self) -> FeatureSet:
        return self._sets["photo"]

    @property
    def video(self) -> FeatureSet:
        return self._sets["video"]

    def for_mode(self, mode: Mode) -> FeatureSet:
        return self._sets[mode]

    def reset(self, mode: Optional[Mode] = None) -> None:
        if mode is None:
            for fs in self._sets.values():
                fs.reset_all()
        else:
            self._sets[mode].reset_all()
