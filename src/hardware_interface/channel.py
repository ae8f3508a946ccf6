"""
Byte Channels
==============
Duplex byte channel abstraction and its pyserial implementation.

A channel hands out at most one reader at a time and serialises writers,
so two commands can never interleave their bytes on the wire.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import serial
import serial.tools.list_ports
from loguru import logger

from .exceptions import TransportError
from .models import SerialConfig


class ByteChannel(ABC):
    """
    Open duplex byte stream.

    Subclasses implement the raw ``read``/``write``/``close`` operations;
    callers go through :meth:`reader` and :meth:`writer`, which guarantee
    the handles are released on every exit path.
    """

    def __init__(self) -> None:
        self._reader_held = False
        self._write_lock = asyncio.Lock()

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the channel can be read and written."""

    @abstractmethod
    async def read(self) -> bytes:
        """
        Wait for the next chunk.

        Returns:
            Received bytes, or ``b""`` at end of stream

        Raises:
            TransportError: If the read fails
        """

    @abstractmethod
    async def write(self, data: bytes) -> int:
        """
        Write a buffer.

        Raises:
            TransportError: If the write fails
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the channel."""

    @property
    def reader_locked(self) -> bool:
        return self._reader_held

    @property
    def writer_locked(self) -> bool:
        return self._write_lock.locked()

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[ByteChannel]:
        """Exclusive read handle."""
        if self._reader_held:
            raise TransportError("Channel already has an active reader")
        self._reader_held = True
        try:
            yield self
        finally:
            self._reader_held = False

    @asynccontextmanager
    async def writer(self) -> AsyncIterator[ByteChannel]:
        """Exclusive write handle; concurrent writers queue up."""
        async with self._write_lock:
            yield self


class SerialChannel(ByteChannel):
    """
    Byte channel over a pyserial port.

    Reads poll ``in_waiting`` so a pending read is an ordinary
    ``asyncio.sleep`` that can be cancelled at any time.
    """

    def __init__(self, config: SerialConfig):
        super().__init__()
        self.config = config
        self._serial: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def port(self) -> Optional[str]:
        return self._serial.port if self._serial else None

    async def open(self) -> None:
        """
        Open the configured port.

        Raises:
            TransportError: If no port is found or the port cannot be opened
        """
        port = self.config.port
        if port == "auto":
            port = find_serial_port()
            if not port:
                raise TransportError("Could not auto-detect a serial adapter")

        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=self.config.baudrate,
                timeout=0,
                write_timeout=self.config.timeout_s,
            )
            self._serial.reset_input_buffer()
        except serial.SerialException as e:
            self._serial = None
            raise TransportError(f"Could not open {port}: {e}") from e

        logger.debug(f"Opened {port} at {self.config.baudrate} baud")

    async def read(self) -> bytes:
        while True:
            if not self.is_open:
                return b""
            try:
                waiting = self._serial.in_waiting
                if waiting:
                    return self._serial.read(waiting)
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"Read failed: {e}") from e
            await asyncio.sleep(self.config.read_poll_interval_s)

    async def write(self, data: bytes) -> int:
        if not self.is_open:
            raise TransportError("Serial port is not open")
        try:
            written = self._serial.write(data)
            self._serial.flush()
            return written or 0
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def close(self) -> None:
        if self._serial is None:
            return
        try:
            if self._serial.is_open:
                self._serial.close()
        finally:
            self._serial = None


def list_available_ports() -> List[Dict[str, str]]:
    """
    List all available serial ports.

    Returns:
        List of port information dictionaries
    """
    ports = []
    for port in serial.tools.list_ports.comports():
        ports.append({
            "device": port.device,
            "name": port.name,
            "description": port.description,
            "hwid": port.hwid,
            "manufacturer": port.manufacturer or "Unknown",
        })
    return ports


def find_serial_port() -> Optional[str]:
    """
    Auto-detect a USB serial adapter.

    Returns:
        Port device path or None if not found
    """
    for port in serial.tools.list_ports.comports():
        description = (port.description or "").lower()
        manufacturer = (port.manufacturer or "").lower()
        if any(tag in description for tag in ["usb2dynamixel", "u2d2", "ch340", "cp210", "ftdi", "usb serial"]):
            logger.info(f"Auto-detected serial adapter on {port.device}")
            return port.device
        if any(tag in manufacturer for tag in ["robotis", "ftdi", "wch", "silicon labs"]):
            logger.info(f"Auto-detected serial adapter on {port.device}")
            return port.device
    return None
