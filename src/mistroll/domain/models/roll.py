from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from mistroll.domain.models.tag_entity import TagEntity


MAX_BURNED_TAGS = 1


class RollStatus(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"

    @property
    def is_terminal(self) -> bool:
        return self == RollStatus.EXECUTED

    @property
    def can_confirm(self) -> bool:
        return self in (RollStatus.PROPOSED, RollStatus.CONFIRMED)

    @property
    def can_amend(self) -> bool:
        return self in (RollStatus.PROPOSED, RollStatus.CONFIRMED)

    @property
    def can_execute(self) -> bool:
        return self == RollStatus.CONFIRMED


# Fields a workflow transition may rewrite; ids, creator and timestamps are store-owned.
ROLL_MUTABLE_FIELDS = frozenset(
    {
        "description",
        "narration_link",
        "justification_notes",
        "might_modifier",
        "status",
        "confirmed_by",
        "help_tags",
        "hinder_tags",
        "burned_tags",
        "help_source_character",
    }
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Roll:
    id: Optional[int]
    creator_id: str
    character_id: Optional[int]
    scene_id: str
    description: str = ""
    narration_link: Optional[str] = None
    justification_notes: Optional[str] = None
    might_modifier: int = 0
    status: RollStatus = RollStatus.PROPOSED
    confirmed_by: Optional[str] = None
    help_tags: FrozenSet[TagEntity] = frozenset()
    hinder_tags: FrozenSet[TagEntity] = frozenset()
    burned_tags: FrozenSet[TagEntity] = frozenset()
    help_source_character: Mapping[TagEntity, Any] = field(default_factory=dict)
    is_reaction: bool = False
    reaction_to_roll_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", RollStatus(self.status))
        object.__setattr__(self, "help_tags", frozenset(self.help_tags))
        object.__setattr__(self, "hinder_tags", frozenset(self.hinder_tags))
        object.__setattr__(self, "burned_tags", frozenset(self.burned_tags))
        object.__setattr__(
            self,
            "help_source_character",
            {entity: source for entity, source in dict(self.help_source_character).items() if entity in self.help_tags},
        )
        if not self.burned_tags <= self.help_tags:
            raise ValueError("Burned tags must also be help tags")
        if len(self.burned_tags) > MAX_BURNED_TAGS:
            raise ValueError(f"At most {MAX_BURNED_TAGS} tag may be burned per roll")

    @property
    def all_tags(self) -> FrozenSet[TagEntity]:
        return self.help_tags | self.hinder_tags

    def with_changes(self, changes: Mapping[str, Any], *, now: datetime | None = None) -> Roll:
        unknown = set(changes) - ROLL_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Roll fields cannot be updated: {', '.join(sorted(unknown))}")
        if self.status.is_terminal and changes:
            raise ValueError(f"Roll #{self.id} is executed and can no longer change")
        return replace(self, **dict(changes), updated_at=now or utc_now())

    def without_tags(self, entities) -> Roll:
        """Drop ``entities`` from every tag collection, so burned tags stay within help tags."""
        dropped = frozenset(entities)
        help_tags = self.help_tags - dropped
        return replace(
            self,
            help_tags=help_tags,
            hinder_tags=self.hinder_tags - dropped,
            burned_tags=self.burned_tags & help_tags,
            help_source_character={
                entity: source for entity, source in self.help_source_character.items() if entity in help_tags
            },
        )


def roll_tag_rows(roll: Roll) -> list[Dict[str, Any]]:
    """Flatten a roll's tag sets into storage rows (one per help/hinder entry)."""
    rows: list[Dict[str, Any]] = []
    for entity in sorted(roll.help_tags, key=lambda item: item.key):
        rows.append(
            {
                "tag_type": "help",
                "is_burned": entity in roll.burned_tags,
                "help_from_character_id": roll.help_source_character.get(entity),
                "parent_type": entity.parent_type.value,
                "parent_id": entity.parent_id,
                "character_id": entity.character_id,
            }
        )
    for entity in sorted(roll.hinder_tags, key=lambda item: item.key):
        rows.append(
            {
                "tag_type": "hinder",
                "is_burned": False,
                "help_from_character_id": None,
                "parent_type": entity.parent_type.value,
                "parent_id": entity.parent_id,
                "character_id": entity.character_id,
            }
        )
    return rows
