"""
Line Reader
============
Reassembles newline delimited text records from raw byte chunks.

- Multi-byte characters split across chunks are decoded correctly
- ``\\n`` and ``\\r\\n`` terminators are both accepted
- The trailing partial record is kept until its terminator arrives
"""

from __future__ import annotations

import asyncio
import codecs
import re
from typing import AsyncIterator, Callable, List, Optional

from loguru import logger

from .channel import ByteChannel

_LINE_BREAK = re.compile(r"\r?\n")


class LineDecoder:
    """Incremental bytes-to-lines decoder."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def buffer(self) -> str:
        """Text received after the last complete line."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[str]:
        """
        Consume a chunk.

        Returns:
            Every line completed by this chunk, untrimmed, in order
        """
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = _LINE_BREAK.split(self._buffer)
        return lines

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""


class LineReader:
    """
    Cancellable line reading loop over a byte channel.

    Usage:
        reader = LineReader(channel, on_line=print, on_error=report)
        reader.start()
        ...
        await reader.stop()
    """

    def __init__(
        self,
        channel: ByteChannel,
        on_line: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        encoding: str = "utf-8",
    ):
        self._channel = channel
        self._decoder = LineDecoder(encoding)
        self._on_line = on_line
        self._on_error = on_error
        self._running = False
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def lines(self) -> AsyncIterator[str]:
        """
        Lazily yield trimmed, non-empty lines until end of stream.

        The channel's read handle is held for the lifetime of the iteration
        and released however it ends.
        """
        self._running = True
        try:
            async with self._channel.reader():
                while self._running:
                    chunk = await self._channel.read()
                    if not chunk:
                        logger.debug("Input stream ended")
                        break
                    for line in self._decoder.feed(chunk):
                        line = line.strip()
                        if line:
                            yield line
        finally:
            self._running = False

    def start(self) -> asyncio.Task:
        """Start :meth:`run` as a background task."""
        self._stopping = False
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        """
        Drive :meth:`lines` into the ``on_line`` callback.

        Read errors end the loop. They are reported through ``on_error``
        unless the reader was being stopped when they happened.
        """
        try:
            async for line in self.lines():
                self._dispatch(line)
        except Exception as e:
            if not self._stopping:
                self._report(f"Read Error: {e}")

    async def stop(self) -> None:
        """Stop reading and wait for the loop to release the channel."""
        self._stopping = True
        self._running = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _dispatch(self, line: str) -> None:
        if self._on_line is None:
            return
        try:
            self._on_line(line)
        except Exception as e:
            logger.error(f"Line callback error: {e}")

    def _report(self, message: str) -> None:
        logger.error(message)
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception as e:
            logger.error(f"Error callback error: {e}")
