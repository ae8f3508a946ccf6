"""
Sequencer - Playback Engine
============================
Timed playback of the active skill.

State machine::

    IDLE --play--> PLAYING --pause--> PAUSED --resume--> PLAYING
      ^               |                  |
      +-----stop------+-------stop-------+

Every run owns a :class:`PlaybackControl`. Control calls flip fields on
that object and the run task observes them at its next poll point, so a
stale run can never act on the flags of a newer one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from loguru import logger

from hardware_interface import ServoState

from .catalog import SkillCatalog
from .models import (
    MAX_SPEED,
    MIN_SPEED,
    Frame,
    PlaybackConfig,
    PlaybackState,
    PlayMode,
    Skill,
    StepDirection,
)

FrameExecutor = Callable[[List[ServoState]], Awaitable[object]]
PlayheadListener = Callable[[Optional[int]], None]


def clamp_speed(speed: float) -> float:
    """
    Bound a playback speed multiplier.

    Raises:
        ValueError: If ``speed`` is not positive
    """
    speed = float(speed)
    if speed <= 0:
        raise ValueError(f"Playback speed must be positive, got {speed}")
    return max(MIN_SPEED, min(MAX_SPEED, speed))


def play_range(mode: PlayMode, frame_count: int, selected: Optional[int]) -> Tuple[int, int]:
    """``[start, end)`` frame indices covered by a run in ``mode``."""
    mode = PlayMode(mode)
    start = 0
    if mode != PlayMode.ALL and selected is not None and 0 <= selected < frame_count:
        start = selected
    end = start + 1 if mode == PlayMode.SELECTED_ONLY else frame_count
    return start, end


@dataclass
class PlaybackControl:
    """Flags shared between the control surface and one run task."""
    speed: float
    playing: bool = True
    paused: bool = False
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def stop(self) -> None:
        self.playing = False
        self.paused = False
        self.stop_event.set()


class Sequencer:
    """
    Plays the catalog's active skill through a frame executor.

    Args:
        catalog: Skill catalog providing the active skill and selection
        execute_frame: Coroutine that encodes and sends a servo vector
        is_connected: Reports whether the link is up
        config: Timing settings
    """

    def __init__(
        self,
        catalog: SkillCatalog,
        execute_frame: FrameExecutor,
        is_connected: Callable[[], bool],
        config: Optional[PlaybackConfig] = None,
    ):
        self.catalog = catalog
        self.config = config or PlaybackConfig()
        self._execute_frame = execute_frame
        self._is_connected = is_connected

        self._speed = self.config.default_speed
        self._control: Optional[PlaybackControl] = None
        self._task: Optional[asyncio.Task] = None
        self._playhead: Optional[int] = None
        self._listeners: List[PlayheadListener] = []

        self.catalog.is_locked = lambda: self.is_busy

        # Statistics
        self.frames_sent = 0
        self.send_errors = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> PlaybackState:
        control = self._control
        if control is None or not control.playing:
            return PlaybackState.IDLE
        return PlaybackState.PAUSED if control.paused else PlaybackState.PLAYING

    @property
    def is_busy(self) -> bool:
        """True while playing or paused."""
        return self.state != PlaybackState.IDLE

    @property
    def playhead(self) -> Optional[int]:
        """Index of the frame being executed, or None when idle."""
        return self._playhead

    @property
    def speed(self) -> float:
        return self._speed

    def set_speed(self, speed: float) -> bool:
        """
        Change the playback speed multiplier (clamped to 0.1-5.0).

        Returns:
            False if playback is running; the speed is unchanged
        """
        speed = clamp_speed(speed)
        if self.is_busy:
            logger.warning("Playback speed cannot change during playback")
            return False
        self._speed = speed
        return True

    def set_loop(self, loop: bool) -> bool:
        return self.catalog.set_loop(loop)

    def add_playhead_listener(self, callback: PlayheadListener) -> None:
        self._listeners.append(callback)

    def remove_playhead_listener(self, callback: PlayheadListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # =========================================================================
    # Controls
    # =========================================================================

    async def play(self, mode: PlayMode = PlayMode.ALL, speed: Optional[float] = None) -> bool:
        """
        Start playing the active skill in the background.

        Args:
            mode: all, from-selected or selected-only
            speed: New speed multiplier applied before starting

        Returns:
            True if a run was started
        """
        if self.is_busy:
            logger.debug("Play ignored: already playing")
            return False
        if not self._is_connected():
            logger.warning("Cannot play: not connected")
            return False

        skill = self.catalog.active_skill
        if skill is None or not skill.frames:
            logger.warning("Cannot play: no frames in the active skill")
            return False

        if speed is not None:
            self._speed = clamp_speed(speed)

        mode = PlayMode(mode)
        start, end = play_range(mode, len(skill.frames), self.catalog.selected_index)

        control = PlaybackControl(speed=self._speed)
        self._control = control
        self._task = asyncio.create_task(
            self._run(control, skill, list(skill.frames), mode, start, end)
        )
        logger.info(
            f"Playing '{skill.name}' frames {start + 1}-{end} "
            f"({mode.value}, x{control.speed:g}, loop={skill.loop})"
        )
        return True

    def pause(self) -> bool:
        if self.state != PlaybackState.PLAYING:
            return False
        self._control.paused = True
        logger.info("Playback paused")
        return True

    def resume(self) -> bool:
        if self.state != PlaybackState.PAUSED:
            return False
        self._control.paused = False
        logger.info("Playback resumed")
        return True

    def stop(self) -> None:
        """
        Stop playback and clear the playhead.

        The run task exits at its next poll point; a frame already being
        transmitted completes, no further frame is sent.
        """
        control = self._control
        self._control = None
        if control is not None:
            control.stop()
            logger.info("Playback stopped")
        self._set_playhead(None)

    async def wait(self) -> None:
        """Wait for the current run task to finish."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def step(self, direction: StepDirection) -> Optional[int]:
        """
        Select the previous or next frame (wrapping) and send it if connected.

        Returns:
            The newly selected index, or None if the skill has no frames
        """
        skill = self.catalog.active_skill
        if skill is None or not skill.frames:
            return None

        count = len(skill.frames)
        current = self.catalog.selected_index
        if StepDirection(direction) == StepDirection.NEXT:
            index = current + 1 if current is not None and current < count - 1 else 0
        else:
            index = current - 1 if current is not None and current > 0 else count - 1

        await self.jump_to(index)
        return index

    async def jump_to(self, index: int) -> bool:
        """Select a frame and send it once if connected."""
        skill = self.catalog.active_skill
        if not self.catalog.select_frame(index):
            return False
        if self._is_connected():
            await self._send(skill.frames[index].active_servos())
        return True

    # =========================================================================
    # Run loop
    # =========================================================================

    async def _run(
        self,
        control: PlaybackControl,
        skill: Skill,
        frames: List[Frame],
        mode: PlayMode,
        start: int,
        end: int,
    ) -> None:
        # Each pass plays a snapshot; edits made meanwhile apply from the next pass
        try:
            while True:
                for index in range(start, min(end, len(frames))):
                    if not control.playing:
                        return

                    while control.paused and control.playing:
                        await asyncio.sleep(self.config.poll_interval_s)
                    if not control.playing:
                        return

                    frame = frames[index]
                    self._set_playhead(index)
                    await self._send(frame.active_servos())
                    await self._wait_frame(control, frame.total_ms / control.speed / 1000.0)

                if not (control.playing and skill.loop and mode != PlayMode.SELECTED_ONLY):
                    break

                frames = list(skill.frames)
                end = len(frames)
                if start >= end:
                    logger.warning(f"'{skill.name}' has no frames left to loop")
                    break
                control.speed = self._speed
                logger.debug(f"Looping '{skill.name}'")
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            logger.debug("Playback task cancelled")
            raise
        finally:
            if self._control is control:
                self._control = None
                self._set_playhead(None)
                logger.info(f"Finished playing '{skill.name}'")

    async def _send(self, servos: Sequence[ServoState]) -> None:
        if not servos:
            return
        try:
            await self._execute_frame(list(servos))
            self.frames_sent += 1
        except Exception as e:
            self.send_errors += 1
            logger.error(f"Frame execution failed: {e}")

    @staticmethod
    async def _wait_frame(control: PlaybackControl, seconds: float) -> None:
        if seconds <= 0:
            # Zero-time frames still yield to the event loop
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(control.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _set_playhead(self, index: Optional[int]) -> None:
        if index == self._playhead:
            return
        self._playhead = index
        for callback in self._listeners:
            try:
                callback(index)
            except Exception as e:
                logger.error(f"Playhead listener error: {e}")
