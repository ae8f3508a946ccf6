"""
Sequencer - Skill Persistence
==============================
JSON export/import of skill catalogs.

File layout is a JSON array of skills::

    [{"id": ..., "name": ..., "createdAt": ...,  "loop": false,
      "frames": [{"id": ..., "duration": 500, "hold": 200,
                  "servos": [{"id": 0, "servoId": 1, "servoType": "AX-12A",
                              "angle": 150.0, "velocity": 256, "active": true,
                              "angleMode": null}]}]}]

Imports fail closed: any record missing a required field rejects the
whole file and the caller's catalog is left untouched.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from hardware_interface import SkillValidationError

from .models import Skill

EXPORT_PREFIX = "ls6_skills"

# Context that switches the models' required-field checks on
IMPORT_CONTEXT = {"require_fields": True}

_skills_adapter = TypeAdapter(List[Skill])


def default_export_name(today: Optional[date] = None) -> str:
    """File name offered for exports, e.g. ``ls6_skills_2024-05-01.json``."""
    today = today or date.today()
    return f"{EXPORT_PREFIX}_{today.isoformat()}.json"


def dumps(skills: Sequence[Skill], indent: Optional[int] = 2) -> str:
    """Serialise skills to the exported JSON layout."""
    return json.dumps([skill.to_dict() for skill in skills], indent=indent)


def parse_skills(data: Any) -> List[Skill]:
    """
    Validate already-decoded JSON data.

    A single skill object is accepted and wrapped into a one element list.

    Raises:
        SkillValidationError: If any record is malformed
    """
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise SkillValidationError(
            f"Invalid skill file: expected an array of skills, got {type(data).__name__}"
        )

    try:
        return _skills_adapter.validate_python(data, context=IMPORT_CONTEXT)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first["loc"])
        raise SkillValidationError(
            f"Invalid skill file at {where or 'root'}: {first['msg']}"
        ) from e


def loads(text: str) -> List[Skill]:
    """
    Parse an exported skill catalog.

    Raises:
        SkillValidationError: If the text is not valid JSON or a record
            is malformed
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SkillValidationError(f"Invalid skill file: {e}") from e
    return parse_skills(data)


def export_skills(skills: Sequence[Skill], filepath: Union[str, Path]) -> Path:
    """
    Write skills to a JSON file.

    Args:
        skills: Skills to export
        filepath: Output file, or a directory to receive the default name
    """
    path = Path(filepath)
    if path.is_dir():
        path = path / default_export_name()

    path.write_text(dumps(skills), encoding="utf-8")
    logger.info(f"Exported {len(skills)} skill(s) to {path}")
    return path


def import_skills(filepath: Union[str, Path]) -> List[Skill]:
    """
    Read skills from a JSON file.

    Raises:
        SkillValidationError: If the file cannot be read or is malformed
    """
    path = Path(filepath)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SkillValidationError(f"Cannot read skill file {path}: {e}") from e

    skills = loads(text)
    logger.info(f"Imported {len(skills)} skill(s) from {path}")
    return skills
