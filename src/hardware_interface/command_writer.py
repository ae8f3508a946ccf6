"""
Command Writer
===============
Serialises text commands and the raw interrupt byte onto a byte channel.

Every write takes the channel's exclusive write handle and gives it back
on every exit path. Failures are reported, never retried.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from loguru import logger

from .channel import ByteChannel
from .codec import INTERRUPT_BYTE
from .models import LogKind

LogSink = Callable[[LogKind, str], None]


def terminate(command: str) -> str:
    """Append the line terminator if it is missing."""
    return command if command.endswith("\n") else f"{command}\n"


class CommandWriter:
    """
    Writes commands to an output channel.

    Args:
        channel: Open byte channel
        on_log: Receives a ``tx`` entry per command and an ``error``
            entry per failed write
        encoding: Text encoding of the command protocol
    """

    def __init__(
        self,
        channel: ByteChannel,
        on_log: Optional[LogSink] = None,
        encoding: str = "utf-8",
    ):
        self._channel = channel
        self._on_log = on_log
        self._encoding = encoding

        # Statistics
        self.commands_sent = 0
        self.write_errors = 0

    async def write_command(self, command: str) -> bool:
        """
        Write one newline terminated command.

        Returns:
            True if the bytes were handed to the channel
        """
        data = terminate(command).encode(self._encoding)
        try:
            async with self._channel.writer():
                await self._channel.write(data)
        except Exception as e:
            self.write_errors += 1
            logger.error(f"Write failed: {e}")
            self._log(LogKind.ERROR, f"Write Error: {e}")
            return False

        self.commands_sent += 1
        logger.trace(f"TX {command.strip()}")
        self._log(LogKind.TX, command.strip())
        return True

    async def write_interrupt(self) -> bool:
        """Write the unterminated 0x03 break byte."""
        try:
            async with self._channel.writer():
                await self._channel.write(INTERRUPT_BYTE)
        except Exception as e:
            self.write_errors += 1
            logger.error(f"Interrupt failed: {e}")
            self._log(LogKind.ERROR, f"Interrupt Error: {e}")
            return False

        self._log(LogKind.TX, "[Ctrl+C Interrupt Sent]")
        return True

    async def write_commands(self, commands: Sequence[str], delay_s: float = 0.0) -> bool:
        """
        Write several commands in order.

        Args:
            commands: Commands to send
            delay_s: Pause between consecutive commands

        Returns:
            True if every command was written
        """
        ok = True
        for i, command in enumerate(commands):
            if i and delay_s > 0:
                await asyncio.sleep(delay_s)
            ok = await self.write_command(command) and ok
        return ok

    def _log(self, kind: LogKind, message: str) -> None:
        if self._on_log is None:
            return
        try:
            self._on_log(kind, message)
        except Exception as e:
            logger.error(f"Log sink error: {e}")
