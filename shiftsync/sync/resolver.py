"""MergeResolver — collects one resolution per conflict.

Pure bookkeeping: nothing here touches a database or a file. The
applier consumes a complete resolver.
"""

from __future__ import annotations

import logging
from typing import Mapping, Union

from shiftsync.sync.conflict import (
    AcceptDelete,
    KeepAll,
    KeepBase,
    KeepModifier,
    MergeConflict,
    Resolution,
)
from shiftsync.sync.errors import IncompleteResolutionError, InvalidResolutionError

logger = logging.getLogger(__name__)

AnyResolution = Union[KeepBase, KeepModifier, AcceptDelete, KeepAll]


class MergeResolver:
    """Track the chosen :data:`Resolution` for each conflict key."""

    def __init__(self, conflicts: list[MergeConflict]) -> None:
        self._conflicts: dict[str, MergeConflict] = {c.conflict_key: c for c in conflicts}
        self._resolutions: dict[str, AnyResolution] = {}

    @property
    def conflicts(self) -> list[MergeConflict]:
        return list(self._conflicts.values())

    def resolve(self, conflict_key: str, resolution: Resolution) -> None:
        """Record *resolution* for one conflict, replacing any earlier choice.

        Raises
        ------
        KeyError
            If *conflict_key* is not one of the conflicts.
        InvalidResolutionError
            If the resolution cannot apply to that conflict.
        """
        conflict = self._conflicts.get(conflict_key)
        if conflict is None:
            raise KeyError(conflict_key)
        self._validate(conflict, resolution)
        self._resolutions[conflict_key] = resolution
        logger.debug("Resolved %s with %s", conflict_key, resolution.kind)

    def resolve_many(self, resolutions: Mapping[str, Resolution]) -> None:
        for key, resolution in resolutions.items():
            self.resolve(key, resolution)

    def keep_all_base(self) -> None:
        """Resolve every conflict to the base version."""
        for key in self._conflicts:
            self._resolutions[key] = KeepBase()

    def keep_all_from(self, actor: str) -> None:
        """Prefer *actor*'s version everywhere; conflicts they did not touch keep the base."""
        for key, conflict in self._conflicts.items():
            index = next(
                (i for i, m in enumerate(conflict.modifiers) if m.actor == actor),
                None,
            )
            self._resolutions[key] = (
                KeepBase() if index is None else KeepModifier(index=index)
            )

    def is_complete(self) -> bool:
        return all(key in self._resolutions for key in self._conflicts)

    def pending(self) -> list[str]:
        return [key for key in self._conflicts if key not in self._resolutions]

    def resolution_for(self, conflict_key: str) -> AnyResolution | None:
        return self._resolutions.get(conflict_key)

    def require_complete(self) -> None:
        pending = self.pending()
        if pending:
            raise IncompleteResolutionError(pending)

    @staticmethod
    def _validate(conflict: MergeConflict, resolution: Resolution) -> None:
        if isinstance(resolution, KeepModifier):
            if resolution.index >= len(conflict.modifiers):
                raise InvalidResolutionError(
                    f"{conflict.conflict_key}: modifier index {resolution.index} "
                    f"out of range ({len(conflict.modifiers)} modifier(s))"
                )
        elif isinstance(resolution, KeepAll):
            if not conflict.allow_multiple:
                raise InvalidResolutionError(
                    f"{conflict.conflict_key}: table '{conflict.table}' does not "
                    "allow keeping multiple versions"
                )
        elif not isinstance(resolution, (KeepBase, AcceptDelete)):
            raise InvalidResolutionError(f"Unknown resolution {resolution!r}")
