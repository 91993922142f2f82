from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class SceneTagType(str, Enum):
    TAG = "tag"
    STATUS = "status"
    LIMIT = "limit"
    BLOCKED = "blocked"

    @property
    def usable_in_rolls(self) -> bool:
        return self in (SceneTagType.TAG, SceneTagType.STATUS)


@dataclass(frozen=True)
class SceneTag:
    id: int
    tag: str
    tag_type: SceneTagType = SceneTagType.TAG


@dataclass
class Scene:
    id: str
    tags: List[SceneTag] = field(default_factory=list)

    def find_tag(self, tag_id: int) -> SceneTag | None:
        return next((tag for tag in self.tags if tag.id == tag_id), None)

    def roll_tags(self) -> List[SceneTag]:
        return [tag for tag in self.tags if tag.tag_type.usable_in_rolls]
