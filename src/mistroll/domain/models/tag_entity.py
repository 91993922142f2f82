from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TagParentType(str, Enum):
    CHARACTER_THEME = "character_theme"
    CHARACTER_THEME_TAG = "character_theme_tag"
    CHARACTER_BACKPACK_ITEM = "character_backpack"
    CHARACTER_STORY_TAG = "character_story_tag"
    CHARACTER_STATUS = "character_status"
    SCENE_TAG = "scene_tag"
    SCENE_STATUS = "scene_status"
    FELLOWSHIP_TAG = "fellowship_tag"

    @property
    def is_character_owned(self) -> bool:
        return self in CHARACTER_PARENT_TYPES

    @classmethod
    def parse(cls, value: str | TagParentType) -> TagParentType:
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        for member in cls:
            if member.value == raw or member.name.lower() == raw:
                return member
        raise ValueError(f"Unknown tag parent type: {value!r}")


CHARACTER_PARENT_TYPES = frozenset(
    {
        TagParentType.CHARACTER_THEME,
        TagParentType.CHARACTER_THEME_TAG,
        TagParentType.CHARACTER_BACKPACK_ITEM,
        TagParentType.CHARACTER_STORY_TAG,
        TagParentType.CHARACTER_STATUS,
    }
)

# Sources a player can spend for +3; statuses never burn.
BURNABLE_PARENT_TYPES = frozenset(
    {
        TagParentType.CHARACTER_THEME,
        TagParentType.CHARACTER_THEME_TAG,
        TagParentType.CHARACTER_BACKPACK_ITEM,
        TagParentType.CHARACTER_STORY_TAG,
    }
)


@dataclass(frozen=True)
class TagEntity:
    """Reference to the record a roll tag comes from.

    Identity is ``(parent_type, parent_id)``: two references to the same theme
    tag are equal even when one of them was built without the owning character.
    The display name is never stored here, it is looked up on demand because
    names are edited and can collide.
    """

    parent_type: TagParentType
    parent_id: int | str
    character_id: int | str | None = field(default=None, compare=False, hash=False)

    def __post_init__(self) -> None:
        parent_type = TagParentType.parse(self.parent_type)
        if parent_type is not self.parent_type:
            object.__setattr__(self, "parent_type", parent_type)
        if parent_type.is_character_owned and self.character_id is None:
            raise ValueError(f"{parent_type.value} tags must name their owning character")
        if not parent_type.is_character_owned and self.character_id is not None:
            raise ValueError(f"{parent_type.value} tags cannot belong to a character")

    @property
    def key(self) -> str:
        return f"{self.parent_type.value}:{self.parent_id}"

    @classmethod
    def from_key(cls, key: str, character_id: int | str | None = None) -> TagEntity:
        parent_type, sep, parent_id = str(key or "").partition(":")
        if not sep or not parent_id:
            raise ValueError(f"Malformed tag key: {key!r}")
        return cls(TagParentType.parse(parent_type), _coerce_id(parent_id), character_id)


def _coerce_id(raw: str) -> int | str:
    try:
        return int(raw)
    except ValueError:
        return raw


def find_entity(entities, entity: TagEntity) -> TagEntity | None:
    """Return the member of ``entities`` sharing ``entity``'s identity, if any."""
    for existing in entities:
        if existing == entity:
            return existing
    return None
