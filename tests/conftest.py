"""
Shared test fixtures
=====================
In-memory byte channel standing in for the serial port.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Union

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hardware_interface import ByteChannel, ServoBus, BusConfig, TransportError


class FakeChannel(ByteChannel):
    """
    Byte channel backed by a queue of scripted chunks.

    Queue an exception to make the next read fail; set ``fail_writes``
    to make every write fail.
    """

    def __init__(self):
        super().__init__()
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._open = True
        self.writes: List[bytes] = []
        self.fail_writes = False
        self.close_count = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def feed(self, item: Union[bytes, Exception]) -> None:
        self._chunks.put_nowait(item)

    def feed_eof(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self) -> bytes:
        item = await self._chunks.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise TransportError("device unplugged")
        # Yield so concurrent writers get a chance to interleave if unguarded
        await asyncio.sleep(0)
        self.writes.append(bytes(data))
        return len(data)

    async def close(self) -> None:
        self.close_count += 1
        self._open = False

    @property
    def sent_lines(self) -> List[str]:
        """Written text commands without their terminator."""
        return [w.decode().rstrip("\n") for w in self.writes if w != b"\x03"]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


# Fixtures

@pytest.fixture
def fake_channel():
    """Provide an open in-memory channel."""
    return FakeChannel()


@pytest.fixture
def servo_bus():
    """Provide an eight servo AX-12A bus."""
    return ServoBus(BusConfig(servo_count=8))
