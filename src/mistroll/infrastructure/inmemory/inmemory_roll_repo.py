from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from mistroll.domain.models.roll import Roll, RollStatus, utc_now
from mistroll.domain.models.tag_entity import TagEntity
from mistroll.domain.repositories import RollRepository


class InMemoryRollRepository(RollRepository):
    """Rolls for a single guild, numbered from 1."""

    def __init__(self) -> None:
        self._rolls: Dict[int, Roll] = {}
        self._next_id = 1

    def create(self, roll: Roll) -> int:
        roll_id = self._next_id
        self._next_id += 1
        now = utc_now()
        self._rolls[roll_id] = replace(roll, id=roll_id, created_at=now, updated_at=now)
        return roll_id

    def get(self, roll_id: int) -> Optional[Roll]:
        return self._rolls.get(roll_id)

    def update(self, roll_id: int, changes: Mapping[str, Any]) -> Roll:
        roll = self._require(roll_id)
        updated = roll.with_changes(changes)
        self._rolls[roll_id] = updated
        return updated

    def delete_invalid_tags(self, roll_id: int, is_valid: Callable[[TagEntity], bool]) -> int:
        roll = self._require(roll_id)
        invalid = [entity for entity in roll.all_tags if not is_valid(entity)]
        if not invalid:
            return 0
        self._rolls[roll_id] = replace(roll.without_tags(invalid), updated_at=utc_now())
        return len(invalid)

    def list_by_scene(self, scene_id: str) -> List[Roll]:
        return [roll for _, roll in sorted(self._rolls.items()) if roll.scene_id == str(scene_id)]

    def list_by_status(self, status: RollStatus) -> List[Roll]:
        wanted = RollStatus(status)
        return [roll for _, roll in sorted(self._rolls.items()) if roll.status == wanted]

    def delete(self, roll_id: int) -> bool:
        return self._rolls.pop(roll_id, None) is not None

    def _require(self, roll_id: int) -> Roll:
        roll = self._rolls.get(roll_id)
        if roll is None:
            raise KeyError(f"Unknown roll: {roll_id}")
        return roll
