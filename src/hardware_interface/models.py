"""
Hardware Interface - Data Models
=================================
Pydantic models for servo state and link configuration.

These models keep the per-servo invariants in one place:
- ``active_id == physical_id - 1``
- ``angle`` always lies inside the range of the current type and mode
- ``velocity`` always lies inside ``[0, 1023]``
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from .numeric import (
    AngleMode,
    ServoType,
    angle_to_position,
    center_angle,
    clamp_angle,
    clamp_velocity,
    is_extended_range,
    max_angle,
    remap_angle_for_mode,
)


class ConnectionStatus(str, Enum):
    """Device connection status."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class CommandFormat(str, Enum):
    """Wire layouts for a SetServoPartial broadcast."""
    BATCH = "batch"
    INTERLEAVED = "interleaved"
    SEPARATE = "separate"


class LogKind(str, Enum):
    """Kinds of observability log entries."""
    RX = "rx"
    TX = "tx"
    INFO = "info"
    ERROR = "error"


MIN_PHYSICAL_ID = 1
MAX_PHYSICAL_ID = 253
DEFAULT_VELOCITY = 256


def require_fields(info: ValidationInfo) -> bool:
    """True when validating untrusted exported data that must be complete."""
    return bool(info.context and info.context.get("require_fields"))


# =============================================================================
# SERVO STATE
# =============================================================================

class ServoState(BaseModel):
    """
    Command target of one servo on the bus.

    Field aliases match the JSON layout used by exported skill files
    (``id``, ``servoId``, ``servoType``, ``angleMode``).
    """
    model_config = ConfigDict(populate_by_name=True)

    active_id: int = Field(0, alias="id", ge=0, le=MAX_PHYSICAL_ID - 1)
    physical_id: Optional[int] = Field(
        None, alias="servoId", ge=MIN_PHYSICAL_ID, le=MAX_PHYSICAL_ID
    )
    servo_type: ServoType = Field(ServoType.AX_12A, alias="servoType")
    angle_mode: Optional[AngleMode] = Field(None, alias="angleMode")
    angle: float = 150.0
    velocity: int = DEFAULT_VELOCITY
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _require_exported_fields(cls, data, info: ValidationInfo):
        if not require_fields(info) or not isinstance(data, dict):
            return data
        missing = [key for key in ("angle", "velocity") if key not in data]
        if "id" not in data and "servoId" not in data:
            missing.append("servoId")
        if missing:
            raise ValueError(f"servo is missing {', '.join(missing)}")
        return data

    @field_validator("velocity", mode="before")
    @classmethod
    def _clamp_velocity(cls, v):
        if v is None:
            return DEFAULT_VELOCITY
        return clamp_velocity(v)

    @field_validator("active", mode="before")
    @classmethod
    def _default_active(cls, v):
        # Older exports carry no flag at all; those servos take part.
        return True if v is None else v

    @model_validator(mode="after")
    def _enforce_invariants(self) -> ServoState:
        if self.physical_id is None:
            self.physical_id = self.active_id + 1
        else:
            self.active_id = self.physical_id - 1

        if not is_extended_range(self.servo_type):
            self.angle_mode = None
        elif self.angle_mode is None:
            self.angle_mode = AngleMode.DEG_360

        self.angle = clamp_angle(self.angle, self.servo_type, self.angle_mode)
        return self

    @property
    def max_angle(self) -> float:
        """Largest angle for the current type and mode."""
        return max_angle(self.servo_type, self.angle_mode)

    @property
    def center_angle(self) -> float:
        """Neutral angle for the current type and mode."""
        return center_angle(self.servo_type, self.angle_mode)

    @property
    def position(self) -> int:
        """Firmware position for the current angle."""
        return angle_to_position(self.angle, self.servo_type, self.angle_mode)

    def set_angle(self, angle: float) -> None:
        self.angle = clamp_angle(angle, self.servo_type, self.angle_mode)

    def set_velocity(self, velocity: int) -> None:
        self.velocity = clamp_velocity(velocity)

    def set_physical_id(self, physical_id: int) -> None:
        """Reassign the bus address; the active id follows."""
        if not MIN_PHYSICAL_ID <= physical_id <= MAX_PHYSICAL_ID:
            raise ValueError(
                f"Physical id must be {MIN_PHYSICAL_ID}-{MAX_PHYSICAL_ID}, got {physical_id}"
            )
        self.physical_id = physical_id
        self.active_id = physical_id - 1

    def set_servo_type(self, servo_type: ServoType) -> None:
        """Change the servo model and re-clamp the angle."""
        self.servo_type = ServoType(servo_type)
        if not is_extended_range(self.servo_type):
            self.angle_mode = None
        elif self.angle_mode is None:
            self.angle_mode = AngleMode.DEG_360
        self.angle = clamp_angle(self.angle, self.servo_type, self.angle_mode)

    def set_angle_mode(self, angle_mode: AngleMode) -> None:
        """
        Switch an MX servo between 300 and 360 degree travel.

        The angle is rescaled so the servo keeps its relative position.
        Ignored for AX servos.
        """
        if not is_extended_range(self.servo_type):
            return
        new_mode = AngleMode(angle_mode)
        if new_mode == self.angle_mode:
            return
        self.angle = remap_angle_for_mode(
            self.angle, self.servo_type, self.angle_mode, new_mode
        )
        self.angle_mode = new_mode

    def snapshot(self) -> ServoState:
        """Independent copy of this state."""
        return self.model_copy(deep=True)

    def to_dict(self) -> dict:
        """Convert to the exported JSON layout."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# LINK CONFIGURATION MODELS
# =============================================================================

class SerialConfig(BaseModel):
    """Serial port configuration."""
    port: str = "auto"
    baudrate: int = Field(57600, gt=0)

    # Timeouts
    timeout_s: float = Field(1.0, gt=0)
    read_poll_interval_s: float = Field(0.001, gt=0)

    # Text encoding of the line protocol
    encoding: str = "utf-8"


class BusConfig(BaseModel):
    """Layout of the servo chain and default command settings."""
    servo_count: int = Field(1, ge=1, le=16)
    servo_type: ServoType = ServoType.AX_12A
    angle_mode: Optional[AngleMode] = None
    velocity: int = Field(DEFAULT_VELOCITY, ge=0, le=1023)
    command_format: CommandFormat = CommandFormat.BATCH
