"""TableRegistry — per-table merge configuration supplied by the application.

The merge engine knows nothing about the schedule schema. Which tables
are additive (several versions of a row may coexist) and which columns
describe a row to a human are registered here from outside.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from shiftsync.config import TABLES_FILENAME
from shiftsync.models.row import Row

logger = logging.getLogger(__name__)


class TableConfig(BaseModel):
    """Merge settings for one table."""

    name: str
    additive: bool = False
    """Rows are independent facts; ``KeepAll`` is a valid resolution."""

    display_keys: list[str] = Field(default_factory=list)
    label: str = ""
    separator: str = " "

    def describe(self, row: Row) -> str | None:
        """Human-readable summary built from the display keys, or None."""
        parts = [
            str(row.fields[k])
            for k in self.display_keys
            if row.fields.get(k) not in (None, "")
        ]
        if not parts:
            return None
        return f"{self.label}{self.separator.join(parts)}"


class TableRegistry:
    """Lookup of :class:`TableConfig` by table name.

    Tables that were never registered are still merged; they are
    treated as non-additive and described by their identity.
    """

    def __init__(self, tables: list[TableConfig] | None = None) -> None:
        self._tables: dict[str, TableConfig] = {}
        for table in tables or []:
            self.register(table)

    def register(self, table: TableConfig) -> None:
        self._tables[table.name] = table
        logger.debug("Registered table %s (additive=%s)", table.name, table.additive)

    def get(self, name: str) -> TableConfig | None:
        return self._tables.get(name)

    def is_additive(self, name: str) -> bool:
        table = self._tables.get(name)
        return table is not None and table.additive

    def additive_tables(self) -> list[str]:
        return sorted(name for name, t in self._tables.items() if t.additive)

    def list_tables(self) -> list[TableConfig]:
        return list(self._tables.values())

    def describe(self, row: Row) -> str:
        """Describe *row* for conflict display."""
        table = self._tables.get(row.table)
        if table is not None:
            text = table.describe(row)
            if text:
                return text
        return f"{row.table} row {row.identity}"

    def to_dict(self) -> dict:
        return {"tables": [t.model_dump() for t in self._tables.values()]}

    @classmethod
    def from_file(cls, path: str | Path) -> TableRegistry:
        """Load a registry from a ``{"tables": [...]}`` JSON file."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls([TableConfig(**t) for t in data.get("tables", [])])

    @classmethod
    def for_project(cls, project_path: str | Path) -> TableRegistry:
        """``<root>/.shiftsync/tables.json`` if present, else :meth:`default`."""
        path = Path(project_path) / ".shiftsync" / TABLES_FILENAME
        if not path.is_file():
            return cls.default()
        logger.info("Loading table registry from %s", path)
        return cls.from_file(path)

    @classmethod
    def default(cls) -> TableRegistry:
        """Registry for the scheduling schema."""
        return cls([TableConfig(**t) for t in _SCHEDULE_TABLES])


_SCHEDULE_TABLES: list[dict] = [
    {"name": "person", "display_keys": ["first_name", "last_name"]},
    {"name": "assignment", "additive": True, "display_keys": ["date"], "label": "Assignment on "},
    {"name": "training", "display_keys": ["name"], "label": "Training: "},
    {"name": "training_rotation", "display_keys": ["area", "start_month"], "label": "Rotation: "},
    {"name": "training_area_override", "display_keys": ["area"], "label": "Area override: "},
    {"name": "monthly_default", "display_keys": ["month"], "label": "Monthly default: "},
    {"name": "monthly_default_day", "display_keys": ["month", "weekday"], "label": "Monthly default: "},
    {"name": "monthly_default_week", "display_keys": ["month", "week_number"], "label": "Monthly default: "},
    {"name": "monthly_default_note", "display_keys": ["month"], "label": "Monthly note: "},
    {
        "name": "timeoff",
        "additive": True,
        "display_keys": ["start_ts", "end_ts"],
        "label": "Time off: ",
        "separator": " to ",
    },
    {"name": "availability_override", "display_keys": ["date"], "label": "Availability: "},
    {"name": "needs_baseline", "display_keys": ["segment"], "label": "Baseline need: "},
    {"name": "needs_override", "display_keys": ["date", "segment"], "label": "Need override: "},
    {"name": "competency", "display_keys": ["name"], "label": "Competency: "},
    {"name": "person_quality", "display_keys": ["person_id"], "label": "Qualities of person "},
    {"name": "person_skill", "display_keys": ["skill_id"], "label": "Skill "},
    {
        "name": "department_event",
        "additive": True,
        "display_keys": ["title", "date"],
        "label": "Event: ",
    },
]
