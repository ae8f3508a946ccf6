"""
Hardware Interface Package
===========================
Communication layer for a chain of Dynamixel-style servos driven through a
LUCI_local controller:
- Numeric model (angle ranges and firmware positions)
- Frame codec (SetServoPartial batch / interleaved / separate layouts)
- Byte channels (pyserial and test doubles)
- Line reader and command writer
- Live servo bus and the serial session manager
"""

from .exceptions import ServoLinkError, TransportError, SkillValidationError
from .numeric import (
    ServoType,
    AngleMode,
    is_extended_range,
    max_angle,
    center_angle,
    angle_to_position,
    remap_angle_for_mode,
)
from .models import (
    ConnectionStatus,
    CommandFormat,
    LogKind,
    ServoState,
    SerialConfig,
    BusConfig,
)
from .codec import (
    PROTOCOL_ID,
    TARGET,
    INTERRUPT_BYTE,
    SEPARATE_COMMAND_DELAY_S,
    active_servos,
    encode_frame,
    encode_single,
)
from .channel import ByteChannel, SerialChannel, list_available_ports
from .line_reader import LineDecoder, LineReader
from .command_writer import CommandWriter
from .servo_bus import ServoBus

# higher-level managers
from .serial_manager import SerialManager

__all__ = [
    "ServoLinkError",
    "TransportError",
    "SkillValidationError",
    "ServoType",
    "AngleMode",
    "is_extended_range",
    "max_angle",
    "center_angle",
    "angle_to_position",
    "remap_angle_for_mode",
    "ConnectionStatus",
    "CommandFormat",
    "LogKind",
    "ServoState",
    "SerialConfig",
    "BusConfig",
    "PROTOCOL_ID",
    "TARGET",
    "INTERRUPT_BYTE",
    "SEPARATE_COMMAND_DELAY_S",
    "active_servos",
    "encode_frame",
    "encode_single",
    "ByteChannel",
    "SerialChannel",
    "list_available_ports",
    "LineDecoder",
    "LineReader",
    "CommandWriter",
    "ServoBus",
    "SerialManager",
]
