"""
Live Servo Bus
===============
The current command target of every servo on the chain.

Frames are captured from :meth:`ServoBus.snapshot`, which returns deep
copies, so editing the bus afterwards never changes a stored frame.
"""

from __future__ import annotations

from typing import Iterator, List, Optional

from loguru import logger

from .models import DEFAULT_VELOCITY, BusConfig, ServoState
from .numeric import AngleMode, ServoType, center_angle, is_extended_range

MAX_SERVOS = 16


class ServoBus:
    """Ordered servo state vector."""

    def __init__(self, config: Optional[BusConfig] = None):
        self.config = config or BusConfig()
        self._servos: List[ServoState] = []
        self.configure(
            self.config.servo_count,
            self.config.servo_type,
            self.config.angle_mode,
            self.config.velocity,
        )

    def __len__(self) -> int:
        return len(self._servos)

    def __iter__(self) -> Iterator[ServoState]:
        return iter(self._servos)

    def __getitem__(self, index: int) -> ServoState:
        return self._servos[index]

    @property
    def servos(self) -> List[ServoState]:
        """Live states (not copies)."""
        return self._servos

    def configure(
        self,
        count: int,
        servo_type: ServoType = ServoType.AX_12A,
        angle_mode: Optional[AngleMode] = None,
        velocity: int = DEFAULT_VELOCITY,
    ) -> None:
        """
        Rebuild the chain with incremental physical ids ``1..count``.

        Every servo starts centred.
        """
        count = max(1, min(MAX_SERVOS, int(count)))
        if is_extended_range(servo_type) and angle_mode is None:
            angle_mode = AngleMode.DEG_360

        self._servos = [
            ServoState(
                physical_id=i + 1,
                servo_type=servo_type,
                angle_mode=angle_mode,
                angle=center_angle(servo_type, angle_mode),
                velocity=velocity,
            )
            for i in range(count)
        ]
        logger.debug(f"Servo bus configured: {count} x {ServoType(servo_type).value}")

    def resize(self, count: int) -> None:
        """Grow or shrink the chain, keeping existing servos."""
        count = max(1, min(MAX_SERVOS, int(count)))
        while len(self._servos) > count:
            self._servos.pop()
        while len(self._servos) < count:
            template = self._servos[-1]
            used = {s.physical_id for s in self._servos}
            physical_id = next(i for i in range(1, 254) if i not in used)
            self._servos.append(ServoState(
                physical_id=physical_id,
                servo_type=template.servo_type,
                angle_mode=template.angle_mode,
                angle=template.center_angle,
                velocity=template.velocity,
            ))

    def set_angle(self, index: int, angle: float) -> None:
        self._servos[index].set_angle(angle)

    def set_velocity(self, index: int, velocity: int) -> None:
        self._servos[index].set_velocity(velocity)

    def set_active(self, index: int, active: bool) -> None:
        self._servos[index].active = bool(active)

    def set_physical_id(self, index: int, physical_id: int) -> None:
        self._servos[index].set_physical_id(physical_id)

    def set_servo_type(self, index: int, servo_type: ServoType) -> None:
        self._servos[index].set_servo_type(servo_type)

    def set_angle_mode(self, index: int, angle_mode: AngleMode) -> None:
        self._servos[index].set_angle_mode(angle_mode)

    def broadcast(self, angle: float, velocity: Optional[int] = None) -> None:
        """Point every servo at the same angle (clamped per servo)."""
        for servo in self._servos:
            servo.set_angle(angle)
            if velocity is not None:
                servo.set_velocity(velocity)

    def snapshot(self) -> List[ServoState]:
        """Deep copy of the whole chain."""
        return [servo.snapshot() for servo in self._servos]
