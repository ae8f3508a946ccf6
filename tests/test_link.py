"""
Link Tests
===========
Line reader, command writer and the serial session manager.
"""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import FakeChannel, wait_until
from hardware_interface import (
    CommandFormat,
    CommandWriter,
    ConnectionStatus,
    LineDecoder,
    LineReader,
    LogKind,
    SerialManager,
    ServoState,
    TransportError,
)


class TestLineDecoder:
    """Tests for incremental line framing."""

    def test_partial_chunks_reassembled(self):
        """"AB" then "C\\nDE\\n" yields ABC and DE with nothing left over."""
        decoder = LineDecoder()
        assert decoder.feed(b"AB") == []
        assert decoder.buffer == "AB"
        assert decoder.feed(b"C\nDE\n") == ["ABC", "DE"]
        assert decoder.buffer == ""

    def test_crlf_terminators(self):
        decoder = LineDecoder()
        assert decoder.feed(b"OK\r\nREADY\r") == ["OK"]
        assert decoder.feed(b"\n") == ["READY"]

    def test_multibyte_split_across_chunks(self):
        """A code point split between reads is decoded once complete."""
        data = "angle 90°\n".encode("utf-8")
        split = data.index(b"\xb0")
        decoder = LineDecoder()
        assert decoder.feed(data[:split]) == []
        assert decoder.feed(data[split:]) == ["angle 90°"]

    def test_empty_lines_kept_for_framing(self):
        decoder = LineDecoder()
        assert decoder.feed(b"A\n\nB\n") == ["A", "", "B"]

    def test_reset(self):
        decoder = LineDecoder()
        decoder.feed(b"partial")
        decoder.reset()
        assert decoder.buffer == ""


class TestLineReader:
    """Tests for the cancellable reading loop."""

    @pytest.mark.asyncio
    async def test_lines_yielded_trimmed(self, fake_channel):
        """Blank lines are dropped and the read handle is released at EOF."""
        fake_channel.feed(b"  hello \r\n\n   \nwor")
        fake_channel.feed(b"ld\n")
        fake_channel.feed_eof()

        reader = LineReader(fake_channel)
        lines = [line async for line in reader.lines()]

        assert lines == ["hello", "world"]
        assert not fake_channel.reader_locked
        assert not reader.is_running

    @pytest.mark.asyncio
    async def test_callbacks_receive_lines(self, fake_channel):
        received = []
        reader = LineReader(fake_channel, on_line=received.append)
        reader.start()

        fake_channel.feed(b"AB")
        fake_channel.feed(b"C\nDE\n")
        await wait_until(lambda: len(received) == 2)

        assert received == ["ABC", "DE"]
        await reader.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_reader_without_error(self, fake_channel):
        """Cancelling a pending read reports nothing."""
        on_error = Mock()
        reader = LineReader(fake_channel, on_error=on_error)
        reader.start()
        await wait_until(lambda: fake_channel.reader_locked)

        await reader.stop()

        assert not fake_channel.reader_locked
        assert not reader.is_running
        on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_read_error_reported(self, fake_channel):
        """A transport failure ends framing and is reported once."""
        errors = []
        reader = LineReader(fake_channel, on_error=errors.append)
        task = reader.start()

        fake_channel.feed(TransportError("port vanished"))
        await asyncio.wait_for(task, timeout=1.0)

        assert errors == ["Read Error: port vanished"]
        assert not fake_channel.reader_locked

    @pytest.mark.asyncio
    async def test_failing_error_callback_contained(self, fake_channel):
        """An error sink that raises does not escape the reader task."""
        on_error = Mock(side_effect=RuntimeError("sink broke"))
        reader = LineReader(fake_channel, on_error=on_error)
        task = reader.start()

        fake_channel.feed(TransportError("port vanished"))
        await asyncio.wait_for(task, timeout=1.0)

        on_error.assert_called_once_with("Read Error: port vanished")
        assert task.exception() is None
        assert not fake_channel.reader_locked

    @pytest.mark.asyncio
    async def test_second_reader_rejected(self, fake_channel):
        first = LineReader(fake_channel)
        first.start()
        await wait_until(lambda: fake_channel.reader_locked)

        with pytest.raises(TransportError):
            async for _ in LineReader(fake_channel).lines():
                pass

        await first.stop()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_reading(self, fake_channel):
        received = []

        def on_line(line):
            if line == "bad":
                raise ValueError("boom")
            received.append(line)

        reader = LineReader(fake_channel, on_line=on_line)
        reader.start()
        fake_channel.feed(b"bad\ngood\n")
        await wait_until(lambda: received == ["good"])
        await reader.stop()


class TestCommandWriter:
    """Tests for command serialisation."""

    def setup_method(self):
        self.channel = FakeChannel()
        self.log = []
        self.writer = CommandWriter(self.channel, on_log=lambda kind, msg: self.log.append((kind, msg)))

    @pytest.mark.asyncio
    async def test_terminator_appended_once(self):
        assert await self.writer.write_command("PING")
        assert await self.writer.write_command("PONG\n")
        assert self.channel.writes == [b"PING\n", b"PONG\n"]
        assert self.log == [(LogKind.TX, "PING"), (LogKind.TX, "PONG")]
        assert self.writer.commands_sent == 2

    @pytest.mark.asyncio
    async def test_interrupt_is_raw_byte(self):
        assert await self.writer.write_interrupt()
        assert self.channel.writes == [b"\x03"]
        assert self.log == [(LogKind.TX, "[Ctrl+C Interrupt Sent]")]

    @pytest.mark.asyncio
    async def test_write_failure_logged_and_released(self):
        """A failed write is reported, not raised, and frees the handle."""
        self.channel.fail_writes = True

        assert not await self.writer.write_command("PING")
        assert not await self.writer.write_interrupt()

        assert not self.channel.writer_locked
        assert self.writer.write_errors == 2
        assert self.log == [
            (LogKind.ERROR, "Write Error: device unplugged"),
            (LogKind.ERROR, "Interrupt Error: device unplugged"),
        ]

    @pytest.mark.asyncio
    async def test_concurrent_writes_do_not_interleave(self):
        commands = [f"CMD{i}" for i in range(20)]
        await asyncio.gather(*(self.writer.write_command(c) for c in commands))
        assert sorted(self.channel.sent_lines) == sorted(commands)
        assert all(w.endswith(b"\n") and w.count(b"\n") == 1 for w in self.channel.writes)

    @pytest.mark.asyncio
    async def test_paced_commands(self):
        loop = asyncio.get_running_loop()
        start = loop.time()
        assert await self.writer.write_commands(["A", "B", "C"], delay_s=0.01)
        assert loop.time() - start >= 0.019
        assert self.channel.sent_lines == ["A", "B", "C"]


class TestSerialManager:
    """Tests for the serial session."""

    def setup_method(self):
        self.channel = FakeChannel()
        self.log = []
        self.manager = SerialManager(
            channel=self.channel,
            on_log=lambda kind, msg: self.log.append((kind, msg)),
        )

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self):
        assert await self.manager.connect()
        assert self.manager.status == ConnectionStatus.CONNECTED
        assert (LogKind.INFO, "System: Connected at 57600 baud") in self.log

        await self.manager.disconnect()
        assert self.manager.status == ConnectionStatus.DISCONNECTED
        assert not self.channel.reader_locked
        assert self.channel.close_count == 1
        assert self.log[-1] == (LogKind.INFO, "System: Serial Port Disconnected")

    @pytest.mark.asyncio
    async def test_sends_rejected_when_disconnected(self):
        assert not await self.manager.send_raw("PING")
        assert not await self.manager.send_interrupt()
        assert not await self.manager.execute_frame([ServoState()])
        assert self.channel.writes == []

    @pytest.mark.asyncio
    async def test_received_lines_logged_and_dispatched(self):
        callback = Mock()
        self.manager.register_callback(callback)
        await self.manager.connect()

        self.channel.feed(b"OK\n")
        await wait_until(lambda: callback.called)

        callback.assert_called_once_with("OK")
        assert (LogKind.RX, "OK") in self.log
        assert self.manager.statistics["lines_received"] == 1
        await self.manager.disconnect()

    @pytest.mark.asyncio
    async def test_execute_frame_formats(self):
        servos = [
            ServoState(active_id=0, angle=180, velocity=256),
            ServoState(active_id=1, angle=0, velocity=100),
        ]
        await self.manager.connect()

        assert await self.manager.execute_frame(servos)
        assert await self.manager.execute_frame(servos, CommandFormat.SEPARATE)
        assert self.channel.sent_lines == [
            "LUCI_local 245 SetServoPartial:0:1:613:0:256:100",
            "LUCI_local 245 SetServoPartial:0:613:256",
            "LUCI_local 245 SetServoPartial:1:0:100",
        ]
        await self.manager.disconnect()

    @pytest.mark.asyncio
    async def test_inactive_frame_sends_nothing(self):
        await self.manager.connect()
        assert not await self.manager.execute_frame([ServoState(active=False)])
        assert self.channel.writes == []
        await self.manager.disconnect()

    @pytest.mark.asyncio
    async def test_raw_command_and_interrupt(self):
        await self.manager.connect()
        assert not await self.manager.send_raw("   ")
        assert await self.manager.send_raw(" LUCI_local 245 GetStatus ")
        assert await self.manager.send_interrupt()
        assert self.channel.writes == [b"LUCI_local 245 GetStatus\n", b"\x03"]
        await self.manager.disconnect()

    @pytest.mark.asyncio
    async def test_read_error_sets_error_status(self):
        await self.manager.connect()
        self.channel.feed(TransportError("cable pulled"))
        await wait_until(lambda: self.manager.status == ConnectionStatus.ERROR)

        assert (LogKind.ERROR, "Read Error: cable pulled") in self.log
        await self.manager.disconnect()
        assert self.manager.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_tolerates_close_failure(self):
        async def broken_close():
            raise TransportError("already gone")

        await self.manager.connect()
        self.channel.close = broken_close
        await self.manager.disconnect()
        assert self.manager.status == ConnectionStatus.DISCONNECTED
