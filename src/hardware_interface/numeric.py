"""
Servo Numeric Model
====================
Pure functions mapping servo type and angle mode to angle ranges and
firmware position encodings.

Position encoding:
- AX series (300 degree travel):      0 - 1023
- MX series (300 or 360 degree mode): 0 - 4095

Positions are always ``floor(angle / max_angle * scale)`` so the integers
sent on the wire are reproducible bit for bit.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional


class ServoType(str, Enum):
    """Supported servo models."""
    AX_12A = "AX-12A"
    MX_28 = "MX-28"
    MX_64 = "MX-64"
    MX_106 = "MX-106"


class AngleMode(str, Enum):
    """Travel range of an extended range (MX) servo."""
    DEG_300 = "300"
    DEG_360 = "360"


STANDARD_MAX_ANGLE = 300.0
EXTENDED_MAX_ANGLE = 360.0

STANDARD_POSITION_SCALE = 1023
EXTENDED_POSITION_SCALE = 4095

MIN_VELOCITY = 0
MAX_VELOCITY = 1023


def is_extended_range(servo_type: ServoType) -> bool:
    """True for MX servos (12-bit positions, selectable 300/360 mode)."""
    return ServoType(servo_type) != ServoType.AX_12A


def max_angle(servo_type: ServoType, angle_mode: Optional[AngleMode] = None) -> float:
    """Maximum commandable angle in degrees."""
    if not is_extended_range(servo_type):
        return STANDARD_MAX_ANGLE
    if angle_mode is not None and AngleMode(angle_mode) == AngleMode.DEG_300:
        return STANDARD_MAX_ANGLE
    return EXTENDED_MAX_ANGLE


def center_angle(servo_type: ServoType, angle_mode: Optional[AngleMode] = None) -> float:
    """Neutral angle in degrees."""
    return max_angle(servo_type, angle_mode) / 2


def position_scale(servo_type: ServoType) -> int:
    """Largest firmware position value for a servo type."""
    if is_extended_range(servo_type):
        return EXTENDED_POSITION_SCALE
    return STANDARD_POSITION_SCALE


def clamp_angle(
    angle: float,
    servo_type: ServoType,
    angle_mode: Optional[AngleMode] = None
) -> float:
    """Clamp an angle into ``[0, max_angle]``."""
    return min(max(float(angle), 0.0), max_angle(servo_type, angle_mode))


def clamp_velocity(velocity: float) -> int:
    """Clamp a velocity into the firmware range ``[0, 1023]``."""
    return int(min(max(int(velocity), MIN_VELOCITY), MAX_VELOCITY))


def angle_to_position(
    angle: float,
    servo_type: ServoType,
    angle_mode: Optional[AngleMode] = None
) -> int:
    """
    Convert an angle in degrees to a firmware position.

    Args:
        angle: Target angle (clamped to the valid range)
        servo_type: Servo model
        angle_mode: MX travel mode, ignored for AX servos

    Returns:
        Integer position in ``[0, 1023]`` or ``[0, 4095]``
    """
    limit = max_angle(servo_type, angle_mode)
    clamped = clamp_angle(angle, servo_type, angle_mode)
    return int(math.floor(clamped / limit * position_scale(servo_type)))


def remap_angle_for_mode(
    angle: float,
    servo_type: ServoType,
    old_mode: Optional[AngleMode],
    new_mode: Optional[AngleMode]
) -> float:
    """
    Carry an angle across an angle mode change.

    The relative position is preserved, not the raw degrees:
    ``round(angle / old_max * new_max)`` (halves round up).
    """
    old_max = max_angle(servo_type, old_mode)
    new_max = max_angle(servo_type, new_mode)
    remapped = math.floor(angle / old_max * new_max + 0.5)
    return clamp_angle(remapped, servo_type, new_mode)
