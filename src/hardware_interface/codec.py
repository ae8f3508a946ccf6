"""
Frame Codec
============
Encodes servo state vectors into LUCI_local ``SetServoPartial`` commands.

Command layouts (ids are zero based active ids)::

    batch:       LUCI_local 245 SetServoPartial:<id1>:<id2>:..:<pos1>:<pos2>:..:<vel1>:<vel2>:..
    interleaved: LUCI_local 245 SetServoPartial:<id1>:<pos1>:<vel1>:<id2>:<pos2>:<vel2>:..
    separate:    LUCI_local 245 SetServoPartial:<id>:<pos>:<vel>   (one command per servo)

Commands are returned without a line terminator; the command writer adds it.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .models import CommandFormat, ServoState

PROTOCOL_ID = "LUCI_local"
TARGET = "245"
SET_SERVO_PARTIAL = "SetServoPartial"

COMMAND_PREFIX = f"{PROTOCOL_ID} {TARGET} {SET_SERVO_PARTIAL}:"

# Pause between commands of a ``separate`` broadcast
SEPARATE_COMMAND_DELAY_S = 0.010

INTERRUPT_BYTE = b"\x03"


def active_servos(servos: Iterable[ServoState]) -> List[ServoState]:
    """Servos taking part in the next broadcast, in list order."""
    return [servo for servo in servos if servo.active]


def _fields(values: Iterable[int]) -> str:
    return ":".join(str(v) for v in values)


def encode_single(servo: ServoState) -> str:
    """Encode a command addressing one servo."""
    return COMMAND_PREFIX + _fields((servo.active_id, servo.position, servo.velocity))


def encode_frame(servos: Sequence[ServoState], fmt: CommandFormat = CommandFormat.BATCH) -> List[str]:
    """
    Encode a servo vector in the given wire format.

    Inactive servos are dropped first.

    Args:
        servos: Servo states in bus order
        fmt: Wire layout

    Returns:
        Commands to transmit in order; empty when no servo is active
    """
    selected = active_servos(servos)
    if not selected:
        return []

    fmt = CommandFormat(fmt)
    if fmt == CommandFormat.SEPARATE:
        return [encode_single(servo) for servo in selected]

    if fmt == CommandFormat.INTERLEAVED:
        values: List[int] = []
        for servo in selected:
            values.extend((servo.active_id, servo.position, servo.velocity))
        return [COMMAND_PREFIX + _fields(values)]

    ids = [servo.active_id for servo in selected]
    positions = [servo.position for servo in selected]
    velocities = [servo.velocity for servo in selected]
    return [COMMAND_PREFIX + _fields(ids + positions + velocities)]


def inter_command_delay(fmt: CommandFormat) -> float:
    """Pacing delay in seconds required between the commands of one broadcast."""
    if CommandFormat(fmt) == CommandFormat.SEPARATE:
        return SEPARATE_COMMAND_DELAY_S
    return 0.0
