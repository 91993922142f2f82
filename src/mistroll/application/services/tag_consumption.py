from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, List

from mistroll.domain.events import RollExecuted, ThemeDevelopmentReady
from mistroll.domain.models.roll import Roll
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.domain.repositories import CharacterRepository


logger = logging.getLogger(__name__)

# Burned items and story tags are spent outright; themes and theme tags stay but are flagged.
_REMOVED_ON_BURN = frozenset({TagParentType.CHARACTER_BACKPACK_ITEM, TagParentType.CHARACTER_STORY_TAG})

Operation = Callable[[object], None]


def burn_operations(roll: Roll, character_repo: CharacterRepository) -> List[Operation]:
    """Character updates that spend the roll's burned tags.

    Each operation takes the persistence context (a DB session or None) so it
    can run inside the same atomic write as the executed status.
    """
    removed: Dict[object, List[TagEntity]] = defaultdict(list)
    flagged: Dict[object, List[TagEntity]] = defaultdict(list)
    for entity in sorted(roll.burned_tags, key=lambda item: item.key):
        if entity.character_id is None:
            continue
        if entity.parent_type in _REMOVED_ON_BURN:
            removed[entity.character_id].append(entity)
        else:
            flagged[entity.character_id].append(entity)

    operations: List[Operation] = []
    for character_id, entities in removed.items():
        operations.append(_remove(character_repo, character_id, tuple(entities)))
    for character_id, entities in flagged.items():
        operations.append(_mark_burned(character_repo, character_id, tuple(entities)))
    return operations


def _remove(character_repo: CharacterRepository, character_id, entities) -> Operation:
    def _apply(_context: object) -> None:
        character_repo.remove_tags(character_id, entities)

    return _apply


def _mark_burned(character_repo: CharacterRepository, character_id, entities) -> Operation:
    def _apply(_context: object) -> None:
        character_repo.mark_burned(character_id, entities)

    return _apply


class ThemeImprovementTracker:
    """Gives a theme an improvement each time one of its weaknesses hinders an executed roll."""

    def __init__(self, character_repo: CharacterRepository, event_bus) -> None:
        self.character_repo = character_repo
        self.event_bus = event_bus

    def register(self, *, priority: int = 50) -> None:
        self.event_bus.subscribe(RollExecuted, self.on_roll_executed, priority=priority)

    def on_roll_executed(self, event: RollExecuted) -> None:
        weaknesses = [
            entity for entity in event.hinder_tags if entity.parent_type == TagParentType.CHARACTER_THEME_TAG
        ]
        if not weaknesses:
            return
        improvements = self.character_repo.increment_theme_improvements(weaknesses)
        for improvement in improvements:
            logger.info(
                "Theme improved by weakness",
                extra={
                    "roll_id": event.roll_id,
                    "character_id": improvement.character_id,
                    "theme_id": improvement.theme_id,
                    "improvements": improvement.improvements,
                },
            )
        ready = [
            ThemeDevelopmentReady(
                character_id=improvement.character_id,
                theme_id=improvement.theme_id,
                theme_name=improvement.theme_name,
                improvements=improvement.improvements,
            )
            for improvement in improvements
            if improvement.ready_to_develop
        ]
        for event_ready in ready:
            self.event_bus.publish(event_ready)
