"""
LS6 Servo Console - Main Application Entry Point
=================================================
Drives a chain of Dynamixel-style servos through a LUCI_local controller
over a serial link.

This is the main entry point of the console. It wires the subsystems
together and provides a unified interface for:
- Serial connection management and the received-line console
- Live servo bus commands
- Skill (frame sequence) playback from exported files and skill sheets
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

# Add src to path for imports
SRC_DIR = Path(__file__).parent
PROJECT_ROOT = SRC_DIR.parent
sys.path.insert(0, str(SRC_DIR))

# Import subsystems
from hardware_interface import (
    BusConfig,
    ByteChannel,
    CommandFormat,
    SerialConfig,
    SerialManager,
    ServoBus,
    ServoState,
    LogKind,
    SkillValidationError,
)
from data_pipeline import LogConfig, LogEntry, LogStore
from sequencer import PlaybackConfig, PlayMode, Sequencer, SkillCatalog, SkillSheet

COMMON_BAUD_RATES = [9600, 38400, 57600, 115200, 230400, 1000000, 2000000]


class AppConfig(BaseModel):
    """Top-level configuration file layout."""
    serial: SerialConfig = Field(default_factory=SerialConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    log: LogConfig = Field(default_factory=LogConfig)


class ServoConsoleApp:
    """
    Main application class for the servo console.

    Orchestrates all subsystems and provides unified control interface.
    """

    VERSION = "1.0.0"

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Dict[str, Any]]] = None,
        channel: Optional[ByteChannel] = None,
    ):
        """
        Initialize the console application.

        Args:
            config_path: Path to configuration YAML file
            overrides: Per-section values that replace file values
            channel: Pre-opened byte channel (a serial port is opened
                from the configuration when omitted)
        """
        self.config_path = config_path or PROJECT_ROOT / "config" / "main_config.yaml"
        self.config = self._load_config(overrides or {})

        self._shutdown_event = asyncio.Event()

        self.log_store = LogStore(self.config.log.max_entries)
        self.bus = ServoBus(self.config.bus)
        self.serial_manager = SerialManager(
            self.config.serial,
            channel=channel,
            on_log=self.log_store.add,
            command_format=self.config.bus.command_format,
        )
        self.catalog = SkillCatalog()
        self.sequencer = Sequencer(
            self.catalog,
            self.execute_frame,
            lambda: self.serial_manager.is_connected,
            self.config.playback,
        )

        logger.info(f"LS6 Servo Console v{self.VERSION} initialized")

    def _load_config(self, overrides: Dict[str, Dict[str, Any]]) -> AppConfig:
        """Load configuration from YAML file and apply overrides."""
        data: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
                logger.info(f"Configuration loaded from {self.config_path}")
        else:
            logger.warning(f"Config file not found: {self.config_path}")

        for section, values in overrides.items():
            data.setdefault(section, {}).update(
                {key: value for key, value in values.items() if value is not None}
            )
        return AppConfig.model_validate(data)

    # =========================================================================
    # Connection
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.serial_manager.is_connected

    async def connect(self) -> bool:
        return await self.serial_manager.connect()

    async def disconnect(self) -> None:
        """
        Tear down the session: stop playback, cancel the reader, close
        the channel. Failures at each step are swallowed.
        """
        try:
            self.sequencer.stop()
            await self.sequencer.wait()
        except Exception as e:
            logger.debug(f"Ignoring sequencer shutdown error: {e}")

        await self.serial_manager.disconnect()

    # =========================================================================
    # Commands
    # =========================================================================

    async def execute_frame(self, servos: List[ServoState]) -> bool:
        """Host execution entry point used by the sequencer."""
        return await self.serial_manager.execute_frame(servos)

    async def send_bus(self, command_format: Optional[CommandFormat] = None) -> bool:
        """Broadcast the live servo bus."""
        return await self.serial_manager.execute_frame(self.bus.snapshot(), command_format)

    async def send_servo(self, index: int) -> bool:
        """Send one servo of the live bus on its own."""
        return await self.serial_manager.send_single(self.bus[index])

    async def send_raw(self, command: str) -> bool:
        return await self.serial_manager.send_raw(command)

    async def send_interrupt(self) -> bool:
        return await self.serial_manager.send_interrupt()

    # =========================================================================
    # Skills
    # =========================================================================

    def load_skills(self, path: Path) -> int:
        """Replace the catalog with the skills in an exported file."""
        count = self.catalog.import_json(path)
        self.log_store.add(LogKind.INFO, f"System: Loaded {count} skill(s) from {path.name}")
        return count

    def load_sheet(self, path: Path) -> None:
        """Load a skill sheet and make it the active skill."""
        sheet = SkillSheet.load_json(path)
        skill = sheet.to_skill(self.bus.snapshot(), name=path.stem)
        self.catalog.add_skill(skill)

    async def play_skill(
        self,
        name: Optional[str] = None,
        mode: PlayMode = PlayMode.ALL,
        speed: Optional[float] = None,
    ) -> bool:
        """
        Play a skill to completion (or until shutdown for looping skills).

        Args:
            name: Skill name; the active skill is used when omitted
            mode: Play mode
            speed: Speed multiplier
        """
        if name is not None:
            skill = self.catalog.find_by_name(name)
            if skill is None:
                logger.error(f"Skill not found: {name}")
                return False
            self.catalog.select_skill(skill.id)

        if not await self.sequencer.play(mode, speed):
            return False

        waiter = asyncio.create_task(self.sequencer.wait())
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait({waiter, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            shutdown.cancel()
            if not waiter.done():
                self.sequencer.stop()
                await waiter
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def print_status(self) -> None:
        """Print current status."""
        stats = self.serial_manager.statistics
        print("\n" + "=" * 60)
        print(f"  LS6 Servo Console v{self.VERSION}")
        print("=" * 60)
        print(f"  Port:        {self.config.serial.port} @ {self.config.serial.baudrate} baud")
        print(f"  Status:      {stats['status']}")
        print(f"  Servos:      {len(self.bus)} x {self.config.bus.servo_type.value}")
        print(f"  Format:      {self.serial_manager.command_format.value}")
        print(f"  Skills:      {len(self.catalog)}")
        print("=" * 60 + "\n")

    async def wait_for_shutdown(self) -> None:
        """Wait for shutdown signal."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request application shutdown."""
        self._shutdown_event.set()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    logger.remove()  # Remove default handler

    level = "DEBUG" if verbose else "INFO"

    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True
    )

    # File handler for debug logs
    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    logger.add(
        log_dir / "ls6_console_{time}.log",
        rotation="10 MB",
        retention="7 days",
        level="DEBUG"
    )


def print_log_entry(entry: LogEntry) -> None:
    print(f"{entry.timestamp:%H:%M:%S} [{entry.kind.value.upper():>5}] {entry.message}")


def print_ports() -> None:
    ports = SerialManager.list_available_ports()
    if not ports:
        print("No serial ports found")
    for port in ports:
        print(f"  {port['device']:<20} {port['description']}")
    print(f"\nCommon baud rates: {', '.join(str(b) for b in COMMON_BAUD_RATES)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LS6 Servo Console - LUCI_local servo chain control and skill playback"
    )
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List serial ports and exit"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--port", "-p",
        default=None,
        help="Serial port ('auto' to detect a USB adapter)"
    )
    parser.add_argument(
        "--baud", "-b",
        type=int,
        default=None,
        help="Baud rate (default: 57600)"
    )
    parser.add_argument(
        "--format", "-f",
        choices=[fmt.value for fmt in CommandFormat],
        default=None,
        help="Broadcast command layout"
    )
    parser.add_argument(
        "--skills",
        type=Path,
        default=None,
        help="Exported skill file to load"
    )
    parser.add_argument(
        "--sheet",
        type=Path,
        default=None,
        help="Skill sheet (table JSON) to load and play"
    )
    parser.add_argument(
        "--skill",
        default=None,
        help="Name of the skill to play"
    )
    parser.add_argument(
        "--mode", "-m",
        choices=[mode.value for mode in PlayMode],
        default=PlayMode.ALL.value,
        help="Play mode (default: all)"
    )
    parser.add_argument(
        "--speed", "-s",
        type=float,
        default=None,
        help="Playback speed multiplier (0.1-5.0)"
    )
    parser.add_argument(
        "--send",
        metavar="CMD",
        action="append",
        default=[],
        help="Send a raw command (repeatable)"
    )
    parser.add_argument(
        "--interrupt",
        action="store_true",
        help="Send the Ctrl+C interrupt byte"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser


def config_overrides(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Configuration values given on the command line.

    The playback speed is applied per run, where it is clamped, so it is
    not part of the configuration.
    """
    return {
        "serial": {"port": args.port, "baudrate": args.baud},
        "bus": {"command_format": args.format},
    }


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.speed is not None and args.speed <= 0:
        parser.error("--speed must be positive")

    if args.list_ports:
        print_ports()
        return 0

    # Setup logging
    setup_logging(args.verbose)

    try:
        app = ServoConsoleApp(config_path=args.config, overrides=config_overrides(args))
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    app.log_store.subscribe(print_log_entry)

    # Setup signal handlers
    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        app.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.skills:
            app.load_skills(args.skills)
        if args.sheet:
            app.load_sheet(args.sheet)
    except SkillValidationError as e:
        logger.error(str(e))
        return 1

    if not await app.connect():
        return 1

    try:
        app.print_status()

        for command in args.send:
            await app.send_raw(command)
        if args.interrupt:
            await app.send_interrupt()

        if args.skill or args.sheet:
            await app.play_skill(args.skill, PlayMode(args.mode), args.speed)
        elif not args.send and not args.interrupt:
            # Run until shutdown requested
            print("LS6 Servo Console is running. Press Ctrl+C to stop.")
            await app.wait_for_shutdown()

    finally:
        await app.disconnect()

    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
