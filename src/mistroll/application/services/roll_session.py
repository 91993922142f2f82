from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from mistroll.domain.models.roll import Roll, RollStatus
from mistroll.domain.models.tag_entity import TagEntity, find_entity


logger = logging.getLogger(__name__)

MIGHT_MIN = -12
MIGHT_MAX = 12
DEFAULT_PAGE_SIZE = 25


class SessionPurpose(str, Enum):
    PROPOSE = "propose"
    REACTION = "reaction"
    AMEND = "amend"
    CONFIRM = "confirm"


class SessionAction(str, Enum):
    SUBMIT = "submit"
    CONFIRM = "confirm"
    CANCEL = "cancel"


class TagSide(str, Enum):
    HELP = "help"
    HINDER = "hinder"


def session_key(
    purpose: SessionPurpose,
    *,
    creator_id: str | None = None,
    scene_id: str | None = None,
    roll_id: int | None = None,
) -> str:
    purpose = SessionPurpose(purpose)
    if purpose in (SessionPurpose.PROPOSE, SessionPurpose.REACTION):
        if not creator_id or not scene_id:
            raise ValueError(f"{purpose.value} sessions are keyed by creator and scene")
        return f"{purpose.value}:{creator_id}:{scene_id}"
    if roll_id is None:
        raise ValueError(f"{purpose.value} sessions are keyed by roll id")
    return f"{purpose.value}:{roll_id}"


def default_actions(purpose: SessionPurpose) -> FrozenSet[SessionAction]:
    if purpose == SessionPurpose.CONFIRM:
        return frozenset({SessionAction.CONFIRM, SessionAction.CANCEL})
    return frozenset({SessionAction.SUBMIT, SessionAction.CANCEL})


@dataclass
class RollSession:
    """Draft state of one roll being built, amended or reviewed."""

    key: str
    purpose: SessionPurpose
    creator_id: str
    character_id: Optional[int]
    scene_id: str
    help_tags: Set[TagEntity] = field(default_factory=set)
    hinder_tags: Set[TagEntity] = field(default_factory=set)
    burned_tags: Set[TagEntity] = field(default_factory=set)
    help_source_character: Dict[TagEntity, Any] = field(default_factory=dict)
    description: str = ""
    narration_link: Optional[str] = None
    justification_notes: Optional[str] = None
    might_modifier: int = 0
    is_reaction: bool = False
    reaction_to_roll_id: Optional[int] = None
    allowed_actions: FrozenSet[SessionAction] = frozenset()
    help_page: int = 0
    hinder_page: int = 0
    roll_id: Optional[int] = None
    original_status: Optional[RollStatus] = None
    original_updated_at: Optional[datetime] = None
    excluded_tags: FrozenSet[TagEntity] = frozenset()
    help_options: List[TagEntity] = field(default_factory=list)
    hinder_options: List[TagEntity] = field(default_factory=list)
    page_size: int = DEFAULT_PAGE_SIZE
    reconfirm_acknowledged: bool = False

    def __post_init__(self) -> None:
        self.purpose = SessionPurpose(self.purpose)
        if not self.allowed_actions:
            self.allowed_actions = default_actions(self.purpose)
        self.page_size = max(1, min(int(self.page_size), DEFAULT_PAGE_SIZE))

    @classmethod
    def from_roll(
        cls,
        roll: Roll,
        purpose: SessionPurpose,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> RollSession:
        return cls(
            key=session_key(purpose, roll_id=roll.id),
            purpose=purpose,
            creator_id=roll.creator_id,
            character_id=roll.character_id,
            scene_id=roll.scene_id,
            help_tags=set(roll.help_tags),
            hinder_tags=set(roll.hinder_tags),
            burned_tags=set(roll.burned_tags),
            help_source_character=dict(roll.help_source_character),
            description=roll.description,
            narration_link=roll.narration_link,
            justification_notes=roll.justification_notes,
            might_modifier=roll.might_modifier,
            is_reaction=roll.is_reaction,
            reaction_to_roll_id=roll.reaction_to_roll_id,
            roll_id=roll.id,
            original_status=roll.status,
            original_updated_at=roll.updated_at,
            page_size=page_size,
        )

    def can(self, action: SessionAction) -> bool:
        return SessionAction(action) in self.allowed_actions

    # -- tag selection -------------------------------------------------

    def _tags(self, side: TagSide) -> Set[TagEntity]:
        return self.help_tags if TagSide(side) == TagSide.HELP else self.hinder_tags

    def _options(self, side: TagSide) -> List[TagEntity]:
        return self.help_options if TagSide(side) == TagSide.HELP else self.hinder_options

    def page(self, side: TagSide) -> int:
        return self.help_page if TagSide(side) == TagSide.HELP else self.hinder_page

    def page_count(self, side: TagSide) -> int:
        options = self._options(side)
        return max(1, -(-len(options) // self.page_size))

    def visible_options(self, side: TagSide) -> List[TagEntity]:
        start = self.page(side) * self.page_size
        return self._options(side)[start : start + self.page_size]

    def change_page(self, side: TagSide, page: int) -> None:
        page = int(page)
        if page < 0 or page >= self.page_count(side):
            raise ValueError(f"Page {page + 1} does not exist; there are {self.page_count(side)} page(s)")
        if TagSide(side) == TagSide.HELP:
            self.help_page = page
        else:
            self.hinder_page = page

    def set_options(self, side: TagSide, options: Iterable[TagEntity]) -> None:
        ordered: List[TagEntity] = []
        for entity in options:
            if entity not in self.excluded_tags and find_entity(ordered, entity) is None:
                ordered.append(entity)
        if TagSide(side) == TagSide.HELP:
            self.help_options = ordered
        else:
            self.hinder_options = ordered
        if self.page(side) >= self.page_count(side):
            self.change_page(side, self.page_count(side) - 1)

    def select_page(self, side: TagSide, selected: Iterable[TagEntity]) -> None:
        """Replace the selections visible on the current page, keeping other pages."""
        visible = self.visible_options(side)
        chosen = {entity for entity in selected if find_entity(visible, entity) is not None}
        tags = self._tags(side)
        for entity in visible:
            if entity in tags and entity not in chosen:
                self._remove(side, entity)
        for entity in chosen:
            self._add(side, find_entity(visible, entity))

    def add_tags(self, side: TagSide, entities: Iterable[TagEntity]) -> None:
        for entity in entities:
            self._add(side, entity)

    def remove_tags(self, side: TagSide, entities: Iterable[TagEntity]) -> None:
        for entity in entities:
            self._remove(side, entity)

    def _add(self, side: TagSide, entity: TagEntity) -> None:
        if entity in self.excluded_tags:
            logger.debug("Ignoring excluded reaction tag", extra={"session_key": self.key, "tag": entity.key})
            return
        self._tags(side).add(entity)

    def _remove(self, side: TagSide, entity: TagEntity) -> None:
        self._tags(side).discard(entity)
        if TagSide(side) == TagSide.HELP:
            self.burned_tags.discard(entity)
            self.help_source_character.pop(entity, None)

    def add_help_from_character(self, character_id: Any, entities: Iterable[TagEntity]) -> None:
        """Set the help tags contributed by another character.

        That character's earlier contribution is replaced. Tags already in the
        help set are re-attributed instead of being added twice.
        """
        chosen = [entity for entity in entities if entity not in self.excluded_tags]
        previous = [entity for entity, source in self.help_source_character.items() if source == character_id]
        for entity in previous:
            if entity not in chosen:
                self._remove(TagSide.HELP, entity)
        for entity in chosen:
            self.help_tags.add(entity)
            self.help_source_character[entity] = character_id

    def burn(self, entity: TagEntity | None, is_burnable: Callable[[TagEntity], bool]) -> bool:
        """Make ``entity`` the single burned tag; ``None`` clears the burn.

        Returns False and changes nothing when the tag is not a burnable help tag.
        """
        if entity is None:
            self.burned_tags.clear()
            return True
        if entity not in self.help_tags or not is_burnable(entity):
            return False
        self.burned_tags = {find_entity(self.help_tags, entity)}
        return True

    def drop_tags(self, entities: Iterable[TagEntity]) -> int:
        removed = 0
        for entity in set(entities):
            present = entity in self.help_tags or entity in self.hinder_tags
            self._remove(TagSide.HELP, entity)
            self._remove(TagSide.HINDER, entity)
            if present:
                removed += 1
        return removed

    @property
    def all_tags(self) -> Set[TagEntity]:
        return self.help_tags | self.hinder_tags

    # -- scalar fields -------------------------------------------------

    def set_might(self, value: int) -> None:
        try:
            might = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Might must be a whole number, got {value!r}") from None
        if isinstance(value, float) and value != might:
            raise ValueError(f"Might must be a whole number, got {value!r}")
        if might < MIGHT_MIN or might > MIGHT_MAX:
            raise ValueError(f"Might must be between {MIGHT_MIN} and {MIGHT_MAX}, got {might}")
        self.might_modifier = might

    def set_justification(self, notes: str | None) -> None:
        text = str(notes or "").strip()
        self.justification_notes = text or None

    def set_narration_link(self, link: str | None) -> None:
        text = str(link or "").strip()
        self.narration_link = text or None

    def set_description(self, description: str | None) -> None:
        self.description = str(description or "").strip()

    def roll_fields(self) -> Dict[str, Any]:
        """Fields a submit or confirm copies onto the persisted roll."""
        return {
            "description": self.description,
            "narration_link": self.narration_link,
            "justification_notes": self.justification_notes,
            "might_modifier": self.might_modifier,
            "help_tags": frozenset(self.help_tags),
            "hinder_tags": frozenset(self.hinder_tags),
            "burned_tags": frozenset(self.burned_tags),
            "help_source_character": dict(self.help_source_character),
        }


class InMemorySessionStore:
    """Process-local session map; drafts are lost on restart."""

    def __init__(self) -> None:
        self._sessions: Dict[str, RollSession] = {}

    def get(self, key: str) -> Optional[RollSession]:
        return self._sessions.get(key)

    def put(self, session: RollSession) -> RollSession:
        self._sessions[session.key] = session
        return session

    def delete(self, key: str) -> bool:
        return self._sessions.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
