from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from typing import Any


def create_inmemory_atomic_persistor(roll_repo, character_repo) -> Callable[..., None]:
    """Execution writer that restores both stores if any step fails."""

    def _persist(
        roll_id: int,
        changes: Mapping[str, Any],
        operations: Sequence[Callable[[object], None]] | None = None,
    ) -> None:
        snapshot = {
            "rolls": copy.deepcopy(getattr(roll_repo, "_rolls", {})),
            "characters": copy.deepcopy(getattr(character_repo, "_characters", {})),
        }
        try:
            roll_repo.update(roll_id, changes)
            for operation in operations or ():
                operation(None)
        except Exception:
            if hasattr(roll_repo, "_rolls"):
                roll_repo._rolls = snapshot["rolls"]
            if hasattr(character_repo, "_characters"):
                character_repo._characters = snapshot["characters"]
            raise

    return _persist
