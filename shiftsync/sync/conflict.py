"""Conflict records and the resolutions a human can pick for them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from shiftsync.models.row import Row


@dataclass
class Modifier:
    """One candidate's version of a conflicting row.

    ``row`` is ``None`` when the candidate deleted the row (or never
    had it).
    """

    actor: str
    row: Optional[Row]
    modified_at: Optional[datetime] = None

    @property
    def is_deletion(self) -> bool:
        return self.row is None


@dataclass
class MergeConflict:
    """A row that two or more candidates changed in different ways."""

    table: str
    sync_id: str
    base_row: Optional[Row]
    modifiers: list[Modifier] = field(default_factory=list)
    row_description: str = ""
    allow_multiple: bool = False

    @property
    def conflict_key(self) -> str:
        return f"{self.table}:{self.sync_id}"

    def actors(self) -> list[str]:
        return [m.actor for m in self.modifiers]

    def to_dict(self) -> dict:
        """Plain summary for logging and notifications."""
        return {
            "conflict_key": self.conflict_key,
            "table": self.table,
            "description": self.row_description,
            "base": self.base_row.content() if self.base_row else None,
            "modifiers": [
                {
                    "actor": m.actor,
                    "deleted": m.is_deletion,
                    "fields": m.row.content() if m.row else None,
                }
                for m in self.modifiers
            ],
            "allow_multiple": self.allow_multiple,
        }


# ---------------------------------------------------------------------------
# Resolutions
# ---------------------------------------------------------------------------


class KeepBase(BaseModel):
    """Revert the row to the common ancestor."""

    kind: Literal["base"] = "base"


class KeepModifier(BaseModel):
    """Take the version of the candidate at ``index``."""

    kind: Literal["modifier"] = "modifier"
    index: int = Field(ge=0)


class AcceptDelete(BaseModel):
    """Tombstone the row whatever the candidates hold."""

    kind: Literal["delete"] = "delete"


class KeepAll(BaseModel):
    """Keep every candidate version as its own row (additive tables only)."""

    kind: Literal["all"] = "all"


Resolution = Annotated[
    Union[KeepBase, KeepModifier, AcceptDelete, KeepAll],
    Field(discriminator="kind"),
]

_resolution_adapter: TypeAdapter = TypeAdapter(Resolution)


def parse_resolution(data: dict) -> Union[KeepBase, KeepModifier, AcceptDelete, KeepAll]:
    """Build a resolution from its dict form, e.g. ``{"kind": "modifier", "index": 1}``."""
    return _resolution_adapter.validate_python(data)
