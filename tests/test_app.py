"""
Application Tests
==================
Log store, live servo bus and the wired-up console application.
"""

import asyncio
import json

import pytest

from conftest import FakeChannel, wait_until
from data_pipeline import LogStore
from hardware_interface import AngleMode, BusConfig, CommandFormat, LogKind, ServoBus, ServoType
from main import ServoConsoleApp, build_parser, config_overrides, main
from sequencer import Frame, PlaybackState, PlayMode, default_row


class TestLogStore:
    """Tests for the bounded console history."""

    def test_ring_keeps_most_recent(self):
        store = LogStore()
        for i in range(2005):
            store.add(LogKind.RX, f"line {i}")

        entries = store.entries()
        assert len(entries) == 2000
        assert entries[0].message == "line 5"
        assert entries[-1].message == "line 2004"
        assert store.get_statistics()["total_added"] == 2005

    def test_filter_and_tail(self):
        store = LogStore(max_entries=10)
        store.add("tx", "PING")
        store.add(LogKind.RX, "PONG")
        store.add(LogKind.ERROR, "Write Error: gone")

        assert [e.message for e in store.entries(LogKind.RX)] == ["PONG"]
        assert [e.message for e in store.tail(2)] == ["PONG", "Write Error: gone"]
        assert store.tail(0) == []

        store.clear()
        assert len(store) == 0

    def test_subscribers(self):
        store = LogStore()
        seen = []

        def broken(entry):
            raise RuntimeError("display gone")

        store.subscribe(broken)
        store.subscribe(seen.append)
        entry = store.add(LogKind.INFO, "hello")
        store.unsubscribe(seen.append)
        store.add(LogKind.INFO, "again")

        assert seen == [entry]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LogStore(max_entries=0)

    def test_export(self, tmp_path):
        store = LogStore()
        store.add(LogKind.TX, "LUCI_local 245 SetServoPartial:0:511:256")
        path = store.export_to_json(tmp_path / "log.json")

        data = json.loads(path.read_text())
        assert data[0]["kind"] == "tx"
        assert data[0]["message"].startswith("LUCI_local")


class TestServoBus:
    """Tests for the live servo vector."""

    def test_configure_incremental_ids(self):
        bus = ServoBus(BusConfig(servo_count=4, servo_type=ServoType.MX_28))
        assert [s.physical_id for s in bus] == [1, 2, 3, 4]
        assert [s.active_id for s in bus] == [0, 1, 2, 3]
        assert all(s.angle == 180 and s.angle_mode == AngleMode.DEG_360 for s in bus)

    def test_count_bounds(self):
        bus = ServoBus()
        bus.configure(40)
        assert len(bus) == 16
        bus.configure(0)
        assert len(bus) == 1

    def test_resize_keeps_existing(self):
        bus = ServoBus(BusConfig(servo_count=2))
        bus.set_angle(0, 10)
        bus.resize(4)
        assert len(bus) == 4
        assert bus[0].angle == 10
        assert bus[3].physical_id == 4
        bus.resize(1)
        assert len(bus) == 1

    def test_snapshot_isolated(self, servo_bus):
        snapshot = servo_bus.snapshot()
        servo_bus.set_angle(0, 5)
        servo_bus.set_velocity(0, 1)
        assert snapshot[0].angle == 150
        assert snapshot[0].velocity == 256

    def test_broadcast_clamps_per_servo(self):
        bus = ServoBus(BusConfig(servo_count=2))
        bus.set_servo_type(1, ServoType.MX_64)
        bus.broadcast(330, velocity=2000)
        assert bus[0].angle == 300
        assert bus[1].angle == 330
        assert all(s.velocity == 1023 for s in bus)


class TestServoConsoleApp:
    """Tests for the wired-up application."""

    def make_app(self, tmp_path, overrides=None):
        config = tmp_path / "config.yaml"
        config.write_text(
            "bus:\n"
            "  servo_count: 2\n"
            "  command_format: interleaved\n"
            "playback:\n"
            "  poll_interval_s: 0.005\n"
        )
        self.channel = FakeChannel()
        return ServoConsoleApp(config_path=config, overrides=overrides, channel=self.channel)

    def test_config_loaded_with_overrides(self, tmp_path):
        app = self.make_app(tmp_path, {"serial": {"baudrate": 1000000, "port": None}})
        assert len(app.bus) == 2
        assert app.serial_manager.command_format == CommandFormat.INTERLEAVED
        assert app.config.serial.baudrate == 1000000
        assert app.config.serial.port == "auto"
        assert app.config.log.max_entries == 2000

    def test_missing_config_uses_defaults(self, tmp_path):
        app = ServoConsoleApp(config_path=tmp_path / "missing.yaml", channel=FakeChannel())
        assert app.config.serial.baudrate == 57600
        assert len(app.bus) == 1

    @pytest.mark.asyncio
    async def test_send_bus_and_single_servo(self, tmp_path):
        app = self.make_app(tmp_path)
        await app.connect()

        assert await app.send_bus()
        assert await app.send_servo(1)
        assert self.channel.sent_lines == [
            "LUCI_local 245 SetServoPartial:0:511:256:1:511:256",
            "LUCI_local 245 SetServoPartial:1:511:256",
        ]
        tx = [e.message for e in app.log_store.entries(LogKind.TX)]
        assert tx == self.channel.sent_lines
        await app.disconnect()

    @pytest.mark.asyncio
    async def test_play_skill_end_to_end(self, tmp_path):
        app = self.make_app(tmp_path)
        skill = app.catalog.create_skill("nod")
        for angle in (0, 300):
            app.bus.broadcast(angle)
            app.catalog.capture_frame(app.bus.servos, duration=0, hold=5)
        app.catalog.create_skill("other")

        await app.connect()
        assert await app.play_skill("nod")
        assert app.catalog.active_skill is skill
        assert self.channel.sent_lines == [
            "LUCI_local 245 SetServoPartial:0:0:256:1:0:256",
            "LUCI_local 245 SetServoPartial:0:1023:256:1:1023:256",
        ]
        await app.disconnect()

    @pytest.mark.asyncio
    async def test_play_unknown_skill(self, tmp_path):
        app = self.make_app(tmp_path)
        await app.connect()
        assert not await app.play_skill("missing")
        await app.disconnect()

    @pytest.mark.asyncio
    async def test_shutdown_stops_looping_skill(self, tmp_path):
        app = self.make_app(tmp_path)
        app.catalog.create_skill("forever")
        app.catalog.add_frame(Frame(servos=app.bus.snapshot(), duration=0, hold=5))
        app.catalog.set_loop(True)
        await app.connect()

        task = asyncio.create_task(app.play_skill(mode=PlayMode.ALL))
        await wait_until(lambda: len(self.channel.writes) >= 3)
        app.request_shutdown()

        assert await asyncio.wait_for(task, timeout=1.0)
        assert app.sequencer.state == PlaybackState.IDLE
        await app.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_stops_playback_then_closes(self, tmp_path):
        app = self.make_app(tmp_path)
        app.catalog.create_skill()
        app.catalog.add_frame(Frame(servos=app.bus.snapshot(), hold=1000))
        await app.connect()
        await app.sequencer.play()
        await wait_until(lambda: len(self.channel.writes) == 1)

        await asyncio.wait_for(app.disconnect(), timeout=0.5)

        assert app.sequencer.state == PlaybackState.IDLE
        assert not app.is_connected
        assert not self.channel.reader_locked
        assert self.channel.close_count == 1
        assert app.log_store.entries()[-1].message == "System: Serial Port Disconnected"

    @pytest.mark.asyncio
    async def test_load_sheet_becomes_active(self, tmp_path):
        app = self.make_app(tmp_path)
        sheet = tmp_path / "arm.json"
        sheet.write_text(json.dumps([default_row(1).model_dump(), default_row(2).model_dump()]))

        app.load_sheet(sheet)

        skill = app.catalog.active_skill
        assert skill.name == "arm"
        assert len(skill.frames) == 2
        assert len(skill.frames[0].servos) == 8
        assert skill.frames[0].hold == 1000


class TestCommandLine:

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.mode == "all"
        assert args.speed is None
        assert args.send == []

    def test_options(self):
        args = build_parser().parse_args([
            "--port", "/dev/ttyUSB0", "--baud", "115200", "--format", "separate",
            "--skill", "wave", "--mode", "selected-only", "--speed", "2.5",
            "--send", "A", "--send", "B",
        ])
        assert args.port == "/dev/ttyUSB0"
        assert args.baud == 115200
        assert args.format == "separate"
        assert args.mode == "selected-only"
        assert args.speed == 2.5
        assert args.send == ["A", "B"]

    def test_out_of_range_speed_is_not_configuration(self, tmp_path):
        """A large --speed is clamped at play time rather than rejected."""
        args = build_parser().parse_args(["--speed", "8", "--baud", "115200"])
        overrides = config_overrides(args)
        assert "playback" not in overrides

        app = ServoConsoleApp(
            config_path=tmp_path / "missing.yaml", overrides=overrides, channel=FakeChannel()
        )
        assert app.config.serial.baudrate == 115200
        assert app.config.playback.default_speed == 1.0

    @pytest.mark.asyncio
    async def test_speed_clamped_when_playing(self, tmp_path):
        app = ServoConsoleApp(config_path=tmp_path / "missing.yaml", channel=FakeChannel())
        app.catalog.create_skill("nod")
        app.catalog.add_frame(Frame(servos=app.bus.snapshot(), duration=0, hold=5))
        await app.connect()

        assert await app.play_skill(speed=8)
        assert app.sequencer.speed == 5.0
        await app.disconnect()

    @pytest.mark.asyncio
    async def test_non_positive_speed_rejected(self):
        with pytest.raises(SystemExit):
            await main(["--speed", "0"])
