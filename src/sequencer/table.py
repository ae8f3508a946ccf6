"""
Sequencer - Skill Sheets
=========================
Spreadsheet-style skill authoring for an eight servo arm.

Each row drives the base servo plus seven joints at one shared speed,
then waits ``delay`` seconds. Rows convert to ordinary frames so a sheet
plays through the same sequencer as captured skills.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence, Union

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from hardware_interface import ServoState, ServoType, SkillValidationError
from hardware_interface.numeric import clamp_velocity

from .models import Frame, Skill

JOINT_COUNT = 7
SHEET_SERVO_COUNT = JOINT_COUNT + 1

# speed 1.0 == velocity 128
VELOCITY_PER_SPEED = 128

DEFAULT_ROW_SPEED = 2.0
DEFAULT_ROW_DELAY_S = 1.0
DEFAULT_ROW_ANGLE = 180.0

CSV_HEADERS = ["Frame", "Speed", "Delay", "Base (P)"] + [
    f"Servo{i}" for i in range(1, JOINT_COUNT + 1)
]

EXPORT_PREFIX = "skills_table"


class TableRow(BaseModel):
    """One sheet row. Every field is required when loading a saved sheet."""
    frame: int = Field(..., ge=1)
    speed: float = Field(..., ge=0)
    delay: float = Field(..., ge=0)
    base: float
    servo1: float
    servo2: float
    servo3: float
    servo4: float
    servo5: float
    servo6: float
    servo7: float

    @property
    def joints(self) -> List[float]:
        """Angles of servo1..servo7."""
        return [getattr(self, f"servo{i}") for i in range(1, JOINT_COUNT + 1)]

    @property
    def velocity(self) -> int:
        return clamp_velocity(round(self.speed * VELOCITY_PER_SPEED))

    def csv_values(self) -> List[str]:
        values = [self.frame, self.speed, self.delay, self.base] + self.joints
        return [f"{v:g}" for v in values]


_rows_adapter = TypeAdapter(List[TableRow])


def default_row(frame: int = 1) -> TableRow:
    angles = {f"servo{i}": DEFAULT_ROW_ANGLE for i in range(1, JOINT_COUNT + 1)}
    return TableRow(
        frame=frame,
        speed=DEFAULT_ROW_SPEED,
        delay=DEFAULT_ROW_DELAY_S,
        base=DEFAULT_ROW_ANGLE,
        **angles,
    )


def row_to_servos(row: TableRow, template: Sequence[ServoState] = ()) -> List[ServoState]:
    """
    Build the servo vector commanded by one row.

    ``base`` drives servo 0 and ``servoK`` drives servo K, all at the row's
    velocity and all active. Settings of those servos come from
    ``template`` when it has them; missing ones are created with physical
    id ``K + 1``. Template servos beyond the eighth are kept as they are.
    """
    servo_type = template[0].servo_type if template else ServoType.AX_12A
    velocity = row.velocity
    angles = [row.base] + row.joints

    servos: List[ServoState] = []
    for index, angle in enumerate(angles):
        if index < len(template):
            servo = template[index].snapshot()
        else:
            servo = ServoState(physical_id=index + 1, servo_type=servo_type)
        servo.set_angle(angle)
        servo.set_velocity(velocity)
        servo.active = True
        servos.append(servo)

    servos.extend(servo.snapshot() for servo in template[SHEET_SERVO_COUNT:])
    return servos


def row_to_frame(row: TableRow, template: Sequence[ServoState] = ()) -> Frame:
    """Rows carry no move time; the whole delay becomes hold."""
    return Frame(
        servos=row_to_servos(row, template),
        duration=0,
        hold=int(round(row.delay * 1000)),
    )


def rows_to_skill(
    rows: Sequence[TableRow],
    template: Sequence[ServoState] = (),
    name: str = "SKILL_TABLE",
    loop: bool = False,
) -> Skill:
    return Skill(
        name=name,
        frames=[row_to_frame(row, template) for row in rows],
        loop=loop,
    )


class SkillSheet:
    """
    Editable list of sheet rows.

    A sheet always holds at least one row and keeps ``frame`` numbered
    ``1..n`` in row order.
    """

    def __init__(self, rows: Optional[Sequence[TableRow]] = None):
        self._rows: List[TableRow] = [row.model_copy() for row in rows] if rows else [default_row()]
        self._clipboard: Optional[TableRow] = None
        self.renumber()

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, index: int) -> TableRow:
        return self._rows[index]

    @property
    def rows(self) -> List[TableRow]:
        return list(self._rows)

    @property
    def clipboard(self) -> Optional[TableRow]:
        return self._clipboard

    def renumber(self) -> None:
        for i, row in enumerate(self._rows):
            row.frame = i + 1

    def add_row(self) -> TableRow:
        row = default_row(len(self._rows) + 1)
        self._rows.append(row)
        return row

    def delete_row(self, index: int) -> bool:
        """Remove a row; the last remaining row cannot be deleted."""
        if len(self._rows) <= 1:
            logger.warning("Cannot delete the last row of a skill sheet")
            return False
        if not 0 <= index < len(self._rows):
            return False
        del self._rows[index]
        self.renumber()
        return True

    def duplicate_row(self, index: int) -> Optional[TableRow]:
        if not 0 <= index < len(self._rows):
            return None
        clone = self._rows[index].model_copy()
        self._rows.insert(index + 1, clone)
        self.renumber()
        return clone

    def update_row(self, index: int, **values) -> TableRow:
        """Set fields of one row; values are validated like a loaded row."""
        row = self._rows[index]
        data = row.model_dump()
        data.update(values)
        data["frame"] = index + 1
        self._rows[index] = TableRow.model_validate(data)
        return self._rows[index]

    def copy_row(self, index: int) -> None:
        self._clipboard = self._rows[index].model_copy()

    def paste_row(self, index: int) -> bool:
        """Overwrite a row with the copied one."""
        if self._clipboard is None or not 0 <= index < len(self._rows):
            return False
        row = self._clipboard.model_copy()
        row.frame = index + 1
        self._rows[index] = row
        return True

    def clear(self) -> None:
        """Reset to a single default row."""
        self._rows = [default_row()]

    def to_skill(self, template: Sequence[ServoState] = (), name: str = "SKILL_TABLE") -> Skill:
        return rows_to_skill(self._rows, template, name=name)

    # =========================================================================
    # Files
    # =========================================================================

    def dumps(self) -> str:
        return json.dumps([row.model_dump() for row in self._rows], indent=2)

    @classmethod
    def loads(cls, text: str) -> SkillSheet:
        """
        Parse a saved sheet.

        Raises:
            SkillValidationError: Unless the text is a non-empty array of
                rows that each carry every field
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SkillValidationError(f"Invalid table file: {e}") from e

        if not isinstance(data, list) or not data:
            raise SkillValidationError("Invalid table file: expected an array of frames")

        try:
            rows = _rows_adapter.validate_python(data)
        except ValidationError as e:
            raise SkillValidationError(
                "Invalid table file: every frame needs frame, speed, delay, base "
                "and servo1-servo7"
            ) from e
        return cls(rows)

    def save_json(self, filepath: Union[str, Path]) -> Path:
        path = Path(filepath)
        if path.is_dir():
            path = path / default_sheet_name("json")
        path.write_text(self.dumps(), encoding="utf-8")
        logger.info(f"Saved skill sheet ({len(self._rows)} rows) to {path}")
        return path

    @classmethod
    def load_json(cls, filepath: Union[str, Path]) -> SkillSheet:
        path = Path(filepath)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SkillValidationError(f"Cannot read table file {path}: {e}") from e
        sheet = cls.loads(text)
        logger.info(f"Loaded skill sheet ({len(sheet)} rows) from {path}")
        return sheet

    def to_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for row in self._rows:
            writer.writerow(row.csv_values())
        return buffer.getvalue()

    def export_csv(self, filepath: Union[str, Path]) -> Path:
        path = Path(filepath)
        if path.is_dir():
            path = path / default_sheet_name("csv")
        path.write_text(self.to_csv(), encoding="utf-8")
        logger.info(f"Exported skill sheet to {path}")
        return path


def default_sheet_name(extension: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{EXPORT_PREFIX}_{today.isoformat()}.{extension}"
