"""
Serial Communication Manager
==============================
Owns one connection session to a LUCI_local servo controller.

Features:
- Port auto-detection
- Background line reader feeding received text to callbacks
- Frame broadcast in batch, interleaved or separate layout
- Raw command and interrupt passthrough
- Orderly teardown that never raises
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from .channel import ByteChannel, SerialChannel, list_available_ports
from .codec import encode_frame, encode_single, inter_command_delay
from .command_writer import CommandWriter
from .line_reader import LineReader
from .models import CommandFormat, ConnectionStatus, LogKind, SerialConfig, ServoState

LogSink = Callable[[LogKind, str], None]


class SerialManager:
    """
    Manages the serial session with the servo controller.

    Usage:
        manager = SerialManager(config, on_log=log_store.add)
        await manager.connect()
        await manager.execute_frame(bus.snapshot())
        await manager.disconnect()
    """

    def __init__(
        self,
        config: Optional[SerialConfig] = None,
        channel: Optional[ByteChannel] = None,
        on_log: Optional[LogSink] = None,
        command_format: CommandFormat = CommandFormat.BATCH,
    ):
        """
        Initialize serial manager.

        Args:
            config: Serial port parameters
            channel: Pre-opened channel; a pyserial channel is opened
                from ``config`` when omitted
            on_log: Receives observability log entries
            command_format: Layout used by :meth:`execute_frame`
        """
        self.config = config or SerialConfig()
        self.command_format = CommandFormat(command_format)
        self._channel = channel
        self._owns_channel = channel is None
        self._on_log = on_log
        self._status = ConnectionStatus.DISCONNECTED

        self._reader: Optional[LineReader] = None
        self._writer: Optional[CommandWriter] = None
        self._line_callbacks: List[Callable[[str], None]] = []

        # Statistics
        self._lines_received = 0
        self._last_line_time: Optional[datetime] = None

        logger.info(f"SerialManager initialized for port: {self.config.port}")

    @property
    def status(self) -> ConnectionStatus:
        """Get current connection status."""
        return self._status

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._status == ConnectionStatus.CONNECTED

    @property
    def channel(self) -> Optional[ByteChannel]:
        return self._channel

    @property
    def statistics(self) -> Dict[str, Any]:
        """Get communication statistics."""
        return {
            "status": self._status.value,
            "lines_received": self._lines_received,
            "commands_sent": self._writer.commands_sent if self._writer else 0,
            "write_errors": self._writer.write_errors if self._writer else 0,
            "last_line_time": self._last_line_time.isoformat() if self._last_line_time else None,
        }

    @staticmethod
    def list_available_ports() -> List[Dict[str, str]]:
        """List all available serial ports."""
        return list_available_ports()

    async def connect(self) -> bool:
        """
        Open the channel and start reading.

        Returns:
            True if connection successful
        """
        if self.is_connected:
            return True

        self._status = ConnectionStatus.CONNECTING
        logger.info("Connecting to serial device...")

        try:
            if self._channel is None or self._owns_channel:
                channel = SerialChannel(self.config)
                await channel.open()
                self._channel = channel
        except Exception as e:
            logger.error(f"Serial connection failed: {e}")
            self._status = ConnectionStatus.ERROR
            self._log(LogKind.ERROR, f"Error: {e}")
            return False

        self._writer = CommandWriter(self._channel, on_log=self._on_log, encoding=self.config.encoding)
        self._reader = LineReader(
            self._channel,
            on_line=self._on_line,
            on_error=self._on_read_error,
            encoding=self.config.encoding,
        )
        self._reader.start()

        self._status = ConnectionStatus.CONNECTED
        logger.success(f"Connected at {self.config.baudrate} baud")
        self._log(LogKind.INFO, f"System: Connected at {self.config.baudrate} baud")
        return True

    async def disconnect(self) -> None:
        """
        Cancel the reader, then close the channel.

        Failures at either step are logged and swallowed.
        """
        if self._reader is not None:
            try:
                await self._reader.stop()
            except Exception as e:
                logger.debug(f"Ignoring reader shutdown error: {e}")
            self._reader = None

        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as e:
                logger.debug(f"Ignoring channel close error: {e}")
            if self._owns_channel:
                self._channel = None

        was_connected = self._status == ConnectionStatus.CONNECTED
        self._status = ConnectionStatus.DISCONNECTED
        self._writer = None
        if was_connected:
            logger.info("Serial connection closed")
            self._log(LogKind.INFO, "System: Serial Port Disconnected")

    def register_callback(self, callback: Callable[[str], None]) -> None:
        """
        Register a callback for received lines.

        Args:
            callback: Function called with each trimmed, non-empty line
        """
        self._line_callbacks.append(callback)
        logger.debug("Registered line callback")

    def unregister_callback(self, callback: Callable[[str], None]) -> None:
        """Remove a registered callback."""
        if callback in self._line_callbacks:
            self._line_callbacks.remove(callback)

    async def send_raw(self, command: str) -> bool:
        """
        Send a free-form text command.

        Returns:
            True if sent successfully
        """
        command = command.strip()
        if not command or not self._ready():
            return False
        return await self._writer.write_command(command)

    async def send_interrupt(self) -> bool:
        """Send the 0x03 break byte."""
        if not self._ready():
            return False
        return await self._writer.write_interrupt()

    async def send_single(self, servo: ServoState) -> bool:
        """Address one servo regardless of the selected broadcast layout."""
        if not self._ready():
            return False
        return await self._writer.write_command(encode_single(servo))

    async def execute_frame(
        self,
        servos: Sequence[ServoState],
        command_format: Optional[CommandFormat] = None,
    ) -> bool:
        """
        Encode a servo vector and transmit it.

        Args:
            servos: Servo states; inactive ones are skipped
            command_format: Overrides the session layout for this call

        Returns:
            True if every command was written (False if nothing was sent)
        """
        if not self._ready():
            return False

        fmt = CommandFormat(command_format or self.command_format)
        commands = encode_frame(servos, fmt)
        if not commands:
            return False
        return await self._writer.write_commands(commands, inter_command_delay(fmt))

    def _ready(self) -> bool:
        if not self.is_connected or self._writer is None:
            logger.warning("Cannot send command: not connected")
            return False
        return True

    def _on_line(self, line: str) -> None:
        self._lines_received += 1
        self._last_line_time = datetime.now()
        logger.trace(f"RX {line}")
        self._log(LogKind.RX, line)
        for callback in self._line_callbacks:
            try:
                callback(line)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    def _on_read_error(self, message: str) -> None:
        self._status = ConnectionStatus.ERROR
        self._log(LogKind.ERROR, message)

    def _log(self, kind: LogKind, message: str) -> None:
        if self._on_log is None:
            return
        try:
            self._on_log(kind, message)
        except Exception as e:
            logger.error(f"Log sink error: {e}")
