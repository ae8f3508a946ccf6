"""
Sequencer - Skill Catalog
==========================
Holds every loaded skill, which one is active and which frame is selected.

All editing of skills and frames goes through the catalog so the
selection can never point at a frame that no longer exists.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from loguru import logger

from hardware_interface import ServoState

from . import persistence
from .models import DEFAULT_DURATION_MS, DEFAULT_HOLD_MS, Frame, Skill

NEW_SKILL_PREFIX = "NEW_SEQUENCE"


class SkillCatalog:
    """
    Editable collection of skills.

    Usage:
        catalog = SkillCatalog()
        catalog.create_skill("wave")
        catalog.capture_frame(bus.snapshot())
        catalog.export_json("skills.json")
    """

    def __init__(self, skills: Optional[Sequence[Skill]] = None):
        self._skills: List[Skill] = list(skills or [])
        self._active_id: Optional[str] = self._skills[0].id if self._skills else None
        self._selected_frame_id: Optional[str] = None

        # Lets the sequencer veto edits that would change a running time base
        self.is_locked: Callable[[], bool] = lambda: False

    # =========================================================================
    # Skills
    # =========================================================================

    @property
    def skills(self) -> List[Skill]:
        return list(self._skills)

    def __len__(self) -> int:
        return len(self._skills)

    @property
    def active_skill(self) -> Optional[Skill]:
        """Skill used for playback and frame editing."""
        return self.get_skill(self._active_id) if self._active_id else None

    def get_skill(self, skill_id: str) -> Optional[Skill]:
        for skill in self._skills:
            if skill.id == skill_id:
                return skill
        return None

    def find_by_name(self, name: str) -> Optional[Skill]:
        for skill in self._skills:
            if skill.name == name:
                return skill
        return None

    def create_skill(self, name: Optional[str] = None) -> Skill:
        """Add an empty skill and make it active."""
        skill = self.add_skill(Skill(name=name or f"{NEW_SKILL_PREFIX}_{len(self._skills) + 1}"))
        logger.info(f"Created skill '{skill.name}'")
        return skill

    def add_skill(self, skill: Skill) -> Skill:
        """Append an existing skill and make it active."""
        self._skills.append(skill)
        self._active_id = skill.id
        self._selected_frame_id = None
        return skill

    def delete_skill(self, skill_id: str) -> bool:
        """Remove a skill. The active skill falls back to none."""
        skill = self.get_skill(skill_id)
        if skill is None:
            return False

        self._skills.remove(skill)
        if self._active_id == skill_id:
            self._active_id = None
            self._selected_frame_id = None
        logger.info(f"Deleted skill '{skill.name}'")
        return True

    def select_skill(self, skill_id: Optional[str]) -> bool:
        """Make a skill active (``None`` clears the active skill)."""
        if skill_id is not None and self.get_skill(skill_id) is None:
            return False
        if skill_id != self._active_id:
            self._selected_frame_id = None
        self._active_id = skill_id
        return True

    def rename_skill(self, skill_id: str, name: str) -> bool:
        skill = self.get_skill(skill_id)
        name = name.strip()
        if skill is None or not name:
            return False
        skill.name = name
        return True

    def set_loop(self, loop: bool) -> bool:
        """
        Set the active skill's loop flag.

        Returns:
            False if there is no active skill or playback is running
        """
        skill = self.active_skill
        if skill is None:
            return False
        if self.is_locked():
            logger.warning("Loop flag cannot change during playback")
            return False
        skill.loop = bool(loop)
        return True

    # =========================================================================
    # Frames
    # =========================================================================

    @property
    def selected_frame(self) -> Optional[Frame]:
        skill = self.active_skill
        if skill is None or self._selected_frame_id is None:
            return None
        index = skill.index_of(self._selected_frame_id)
        return skill.frames[index] if index >= 0 else None

    @property
    def selected_index(self) -> Optional[int]:
        """Index of the selected frame in the active skill."""
        skill = self.active_skill
        if skill is None or self._selected_frame_id is None:
            return None
        index = skill.index_of(self._selected_frame_id)
        return index if index >= 0 else None

    def select_frame(self, frame: Union[str, int, None]) -> bool:
        """
        Select a frame of the active skill by id or index.

        ``None`` clears the selection.
        """
        skill = self.active_skill
        if frame is None:
            self._selected_frame_id = None
            return True
        if skill is None:
            return False

        if isinstance(frame, int):
            if not 0 <= frame < len(skill.frames):
                return False
            self._selected_frame_id = skill.frames[frame].id
            return True

        if skill.index_of(frame) < 0:
            return False
        self._selected_frame_id = frame
        return True

    def capture_frame(
        self,
        servos: Sequence[ServoState],
        duration: int = DEFAULT_DURATION_MS,
        hold: int = DEFAULT_HOLD_MS,
    ) -> Optional[Frame]:
        """
        Append a snapshot of ``servos`` to the active skill and select it.

        Returns:
            The new frame, or None without an active skill
        """
        skill = self.active_skill
        if skill is None:
            logger.warning("No active skill to capture into")
            return None

        frame = Frame.capture(servos, duration=duration, hold=hold)
        skill.frames.append(frame)
        self._selected_frame_id = frame.id
        logger.debug(f"Captured frame {len(skill.frames)} into '{skill.name}'")
        return frame

    def add_frame(self, frame: Frame, index: Optional[int] = None) -> Optional[Frame]:
        """Insert an existing frame (appended when ``index`` is None)."""
        skill = self.active_skill
        if skill is None:
            return None
        if index is None:
            skill.frames.append(frame)
        else:
            skill.frames.insert(max(0, min(index, len(skill.frames))), frame)
        return frame

    def duplicate_frame(self, frame_id: str) -> Optional[Frame]:
        """Insert a copy right after the source and select the copy."""
        skill = self.active_skill
        index = skill.index_of(frame_id) if skill else -1
        if index < 0:
            return None

        clone = skill.frames[index].copy_with_new_id()
        skill.frames.insert(index + 1, clone)
        self._selected_frame_id = clone.id
        return clone

    def move_frame(self, from_index: int, to_index: int) -> bool:
        skill = self.active_skill
        if skill is None:
            return False
        count = len(skill.frames)
        if not (0 <= from_index < count and 0 <= to_index < count):
            return False

        frame = skill.frames.pop(from_index)
        skill.frames.insert(to_index, frame)
        return True

    def delete_frame(self, frame_id: str) -> bool:
        skill = self.active_skill
        index = skill.index_of(frame_id) if skill else -1
        if index < 0:
            return False

        del skill.frames[index]
        if self._selected_frame_id == frame_id:
            self._selected_frame_id = None
        return True

    def update_frame(
        self,
        frame_id: str,
        duration: Optional[int] = None,
        hold: Optional[int] = None,
        servos: Optional[Sequence[ServoState]] = None,
    ) -> Optional[Frame]:
        """
        Edit a frame in place.

        Timing values are clamped at zero; ``servos`` replaces the stored
        snapshot with fresh copies.
        """
        skill = self.active_skill
        index = skill.index_of(frame_id) if skill else -1
        if index < 0:
            return None

        frame = skill.frames[index]
        if duration is not None:
            frame.duration = max(0, int(duration))
        if hold is not None:
            frame.hold = max(0, int(hold))
        if servos is not None:
            frame.servos = [servo.snapshot() for servo in servos]
        return frame

    # =========================================================================
    # Import / export
    # =========================================================================

    def replace_all(self, skills: Sequence[Skill]) -> None:
        """Swap in a whole catalog; the first skill becomes active."""
        self._skills = list(skills)
        self._active_id = self._skills[0].id if self._skills else None
        self._selected_frame_id = None

    def export_json(self, filepath: Union[str, Path]) -> Path:
        return persistence.export_skills(self._skills, filepath)

    def import_json(self, filepath: Union[str, Path]) -> int:
        """
        Replace the catalog with the skills in a file.

        Raises:
            SkillValidationError: If the file is rejected; the catalog is
                left as it was
        """
        skills = persistence.import_skills(filepath)
        self.replace_all(skills)
        return len(skills)
