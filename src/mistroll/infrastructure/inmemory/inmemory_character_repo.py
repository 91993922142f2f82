from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional

from mistroll.domain.models.character import THEME_IMPROVEMENTS_TO_DEVELOP, Character
from mistroll.domain.models.tag import TagData, TagKind, status_display_name
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.domain.repositories import CharacterRepository, TagOption, ThemeImprovement


_UPDATABLE_FIELDS = frozenset({"name", "user_id", "themes", "backpack", "story_tags", "statuses", "fellowship_id"})


class InMemoryCharacterRepository(CharacterRepository):
    def __init__(self, characters: Iterable[Character] = ()) -> None:
        self._characters: Dict[int, Character] = {character.id: character for character in characters}

    def save(self, character: Character) -> None:
        self._characters[character.id] = character

    def get(self, owner_id: str, character_id: int) -> Optional[Character]:
        character = self._characters.get(character_id)
        if character is None or str(character.user_id) != str(owner_id):
            return None
        return character

    def get_by_id(self, character_id: int) -> Optional[Character]:
        return self._characters.get(character_id)

    def list_all(self) -> List[Character]:
        return sorted(self._characters.values(), key=lambda character: character.name.casefold())

    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        character = self._characters.get(entity.character_id)
        if character is None:
            return None
        kind = entity.parent_type
        if kind == TagParentType.CHARACTER_THEME:
            theme = character.find_theme(entity.parent_id)
            return TagData(theme.name, TagKind.TAG, theme.is_burned) if theme else None
        if kind == TagParentType.CHARACTER_THEME_TAG:
            theme, tag = character.find_theme_tag(entity.parent_id)
            if tag is None:
                return None
            return TagData(tag.tag, TagKind.WEAKNESS if tag.is_weakness else TagKind.TAG, tag.is_burned)
        if kind == TagParentType.CHARACTER_BACKPACK_ITEM:
            item = character.find_backpack_item(entity.parent_id)
            return TagData(item.item, TagKind.TAG) if item else None
        if kind == TagParentType.CHARACTER_STORY_TAG:
            story = character.find_story_tag(entity.parent_id)
            return TagData(story.tag, TagKind.TAG) if story else None
        if kind == TagParentType.CHARACTER_STATUS:
            status = character.find_status(entity.parent_id)
            if status is None:
                return None
            return TagData(status_display_name(status.status, status.power_levels), TagKind.STATUS)
        return None

    def list_tags(self, character_id: int) -> List[TagOption]:
        character = self._characters.get(character_id)
        if character is None:
            return []
        options: List[TagOption] = []
        for theme in character.themes:
            options.append(
                TagOption(_entity(TagParentType.CHARACTER_THEME, theme.id, character), theme.name, is_burned=theme.is_burned)
            )
            for tag in theme.tags:
                options.append(
                    TagOption(
                        _entity(TagParentType.CHARACTER_THEME_TAG, tag.id, character),
                        tag.tag,
                        is_weakness=tag.is_weakness,
                        is_burned=tag.is_burned,
                    )
                )
        for item in character.backpack:
            options.append(TagOption(_entity(TagParentType.CHARACTER_BACKPACK_ITEM, item.id, character), item.item))
        for story in character.story_tags:
            options.append(TagOption(_entity(TagParentType.CHARACTER_STORY_TAG, story.id, character), story.tag))
        for status in character.statuses:
            options.append(
                TagOption(
                    _entity(TagParentType.CHARACTER_STATUS, status.id, character),
                    status_display_name(status.status, status.power_levels),
                )
            )
        return options

    def mark_burned(self, character_id: int, entities: Iterable[TagEntity]) -> None:
        character = self._require(character_id)
        for entity in entities:
            if entity.parent_type == TagParentType.CHARACTER_THEME:
                theme = character.find_theme(entity.parent_id)
                if theme is not None:
                    theme.is_burned = True
            elif entity.parent_type == TagParentType.CHARACTER_THEME_TAG:
                _, tag = character.find_theme_tag(entity.parent_id)
                if tag is not None:
                    tag.is_burned = True

    def update(self, character_id: int, changes: Mapping[str, Any]) -> None:
        character = self._require(character_id)
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Character fields cannot be updated: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(character, name, copy.deepcopy(value))

    def remove_tags(self, character_id: int, entities: Iterable[TagEntity]) -> None:
        character = self._require(character_id)
        targets = list(entities)
        backpack = {e.parent_id for e in targets if e.parent_type == TagParentType.CHARACTER_BACKPACK_ITEM}
        stories = {e.parent_id for e in targets if e.parent_type == TagParentType.CHARACTER_STORY_TAG}
        if backpack:
            self.update(character_id, {"backpack": [item for item in character.backpack if item.id not in backpack]})
        if stories:
            self.update(character_id, {"story_tags": [tag for tag in character.story_tags if tag.id not in stories]})

    def increment_theme_improvements(self, entities: Iterable[TagEntity]) -> List[ThemeImprovement]:
        improved: List[ThemeImprovement] = []
        for entity in entities:
            if entity.parent_type != TagParentType.CHARACTER_THEME_TAG:
                continue
            character = self._characters.get(entity.character_id)
            if character is None:
                continue
            theme, tag = character.find_theme_tag(entity.parent_id)
            if tag is None or not tag.is_weakness:
                continue
            theme.improvements += 1
            improved.append(
                ThemeImprovement(
                    character_id=character.id,
                    theme_id=theme.id,
                    theme_name=theme.name,
                    improvements=theme.improvements,
                    ready_to_develop=theme.improvements >= THEME_IMPROVEMENTS_TO_DEVELOP,
                )
            )
        return improved

    def _require(self, character_id: int) -> Character:
        character = self._characters.get(character_id)
        if character is None:
            raise KeyError(f"Unknown character: {character_id}")
        return character


def _entity(parent_type: TagParentType, parent_id: int, character: Character) -> TagEntity:
    return TagEntity(parent_type, parent_id, character.id)
