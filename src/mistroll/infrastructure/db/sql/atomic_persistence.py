from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .repos import SqlRollRepository


def create_sql_atomic_persistor(roll_repo: SqlRollRepository, character_repo=None) -> Callable[..., None]:
    """Execution writer that shares one transaction between the roll and its side effects.

    Operations receive the open session; anything they raise rolls the roll
    status back with them. Character changes made outside the database are
    restored when the transaction, including its commit, fails.
    """

    def _persist(
        roll_id: int,
        changes: Mapping[str, Any],
        operations: Sequence[Callable[[object], None]] | None = None,
    ) -> None:
        snapshot = copy.deepcopy(getattr(character_repo, "_characters", {}))
        try:
            with roll_repo.session_factory.begin() as session:
                roll_repo.update_in_session(session, roll_id, changes)
                for operation in operations or ():
                    operation(session)
        except Exception:
            if hasattr(character_repo, "_characters"):
                character_repo._characters = snapshot
            raise

    return _persist
