"""
Sequencer Package
==================
Skill authoring and timed playback:
- Frame / Skill models
- Skill catalog (editing and selection)
- JSON persistence and spreadsheet-style skill sheets
- Playback state machine
"""

from .models import (
    DEFAULT_DURATION_MS,
    DEFAULT_HOLD_MS,
    MIN_SPEED,
    MAX_SPEED,
    PlayMode,
    StepDirection,
    PlaybackState,
    Frame,
    Skill,
    PlaybackConfig,
)
from .catalog import SkillCatalog
from .persistence import default_export_name, dumps, loads, export_skills, import_skills
from .table import TableRow, SkillSheet, default_row, row_to_servos, rows_to_skill
from .player import PlaybackControl, Sequencer, clamp_speed

__all__ = [
    "DEFAULT_DURATION_MS",
    "DEFAULT_HOLD_MS",
    "MIN_SPEED",
    "MAX_SPEED",
    "PlayMode",
    "StepDirection",
    "PlaybackState",
    "Frame",
    "Skill",
    "PlaybackConfig",
    "SkillCatalog",
    "default_export_name",
    "dumps",
    "loads",
    "export_skills",
    "import_skills",
    "TableRow",
    "SkillSheet",
    "default_row",
    "row_to_servos",
    "rows_to_skill",
    "PlaybackControl",
    "Sequencer",
    "clamp_speed",
]
