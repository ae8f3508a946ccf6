"""
Sequencer - Data Models
========================
Skills, frames and playback settings.

A Skill owns its frames exclusively; frames hold snapshots of servo
state, never references to the live bus.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import List, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator

from hardware_interface import ServoState, active_servos
from hardware_interface.models import require_fields

DEFAULT_DURATION_MS = 500
DEFAULT_HOLD_MS = 200

MIN_SPEED = 0.1
MAX_SPEED = 5.0


def new_id() -> str:
    """Short random identifier for skills and frames."""
    return uuid.uuid4().hex[:9]


def now_ms() -> int:
    return int(time.time() * 1000)


def _check_keys(data, info: ValidationInfo, what: str, keys: Sequence[str]):
    if require_fields(info) and isinstance(data, dict):
        missing = [key for key in keys if key not in data]
        if missing:
            raise ValueError(f"{what} is missing {', '.join(missing)}")
    return data


class PlayMode(str, Enum):
    """Which frames a play run covers."""
    ALL = "all"
    FROM_SELECTED = "from-selected"
    SELECTED_ONLY = "selected-only"


class StepDirection(str, Enum):
    PREV = "prev"
    NEXT = "next"


class PlaybackState(str, Enum):
    """Sequencer state machine states."""
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


class Frame(BaseModel):
    """One timed step of a skill."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    servos: List[ServoState] = Field(default_factory=list)

    # Nominal move time; the servo firmware does the actual timing
    duration: int = Field(DEFAULT_DURATION_MS, ge=0)

    # Dwell after the move
    hold: int = Field(DEFAULT_HOLD_MS, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _require_exported_fields(cls, data, info: ValidationInfo):
        return _check_keys(data, info, "frame", ("id", "servos", "duration", "hold"))

    @classmethod
    def capture(
        cls,
        servos: Sequence[ServoState],
        duration: int = DEFAULT_DURATION_MS,
        hold: int = DEFAULT_HOLD_MS,
    ) -> Frame:
        """Create a frame from deep copies of ``servos``."""
        return cls(
            servos=[servo.snapshot() for servo in servos],
            duration=duration,
            hold=hold,
        )

    @property
    def total_ms(self) -> int:
        """Time the sequencer spends on this frame at speed 1.0."""
        return self.duration + self.hold

    def active_servos(self) -> List[ServoState]:
        return active_servos(self.servos)

    def copy_with_new_id(self) -> Frame:
        clone = self.model_copy(deep=True)
        clone.id = new_id()
        return clone

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Skill(BaseModel):
    """Named, optionally looping sequence of frames."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    name: str
    frames: List[Frame] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    loop: bool = False

    @model_validator(mode="before")
    @classmethod
    def _require_exported_fields(cls, data, info: ValidationInfo):
        return _check_keys(data, info, "skill", ("id", "name", "frames"))

    def index_of(self, frame_id: str) -> int:
        """Index of a frame, or -1 if it is not part of this skill."""
        for i, frame in enumerate(self.frames):
            if frame.id == frame_id:
                return i
        return -1

    def to_dict(self) -> dict:
        """Convert to the exported JSON layout."""
        return self.model_dump(by_alias=True, mode="json")


class PlaybackConfig(BaseModel):
    """Sequencer timing settings."""
    poll_interval_s: float = Field(0.05, gt=0)
    default_speed: float = Field(1.0, ge=MIN_SPEED, le=MAX_SPEED)
