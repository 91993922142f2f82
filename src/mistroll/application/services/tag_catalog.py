from __future__ import annotations

from typing import Iterable, List, Optional

from mistroll.domain.models.tag_entity import TagEntity
from mistroll.domain.repositories import (
    CharacterRepository,
    FellowshipRepository,
    SceneRepository,
    TagOption,
)


class TagCatalog:
    """Collects the tags a roll picker can offer.

    Help options leave out weaknesses, hinder options include them. Burned
    tags are never offered.
    """

    def __init__(
        self,
        character_repo: CharacterRepository,
        scene_repo: SceneRepository,
        fellowship_repo: FellowshipRepository,
    ) -> None:
        self.character_repo = character_repo
        self.scene_repo = scene_repo
        self.fellowship_repo = fellowship_repo

    def help_options(
        self,
        character_id: Optional[int],
        scene_id: str,
        *,
        exclude: Iterable[TagEntity] = (),
    ) -> List[TagOption]:
        options = [option for option in self._all_options(character_id, scene_id) if not option.is_weakness]
        return _ordered(options, exclude)

    def hinder_options(
        self,
        character_id: Optional[int],
        scene_id: str,
        *,
        exclude: Iterable[TagEntity] = (),
    ) -> List[TagOption]:
        return _ordered(self._all_options(character_id, scene_id), exclude)

    def character_help_options(self, character_id: int, *, exclude: Iterable[TagEntity] = ()) -> List[TagOption]:
        """Help options on another character's sheet, for assists."""
        options = [option for option in self.character_repo.list_tags(character_id) if not option.is_weakness]
        return _ordered(options, exclude)

    def _all_options(self, character_id: Optional[int], scene_id: str) -> List[TagOption]:
        options: List[TagOption] = []
        if character_id is not None:
            options.extend(self.character_repo.list_tags(character_id))
            character = self.character_repo.get_by_id(character_id)
            if character is not None and character.fellowship_id is not None:
                options.extend(self.fellowship_repo.list_tags(character.fellowship_id))
        options.extend(self.scene_repo.list_tags(scene_id))
        return options


def _ordered(options: Iterable[TagOption], exclude: Iterable[TagEntity]) -> List[TagOption]:
    excluded = frozenset(exclude)
    seen = set()
    kept: List[TagOption] = []
    for option in options:
        if option.is_burned or option.entity in excluded or option.entity in seen:
            continue
        seen.add(option.entity)
        kept.append(option)
    return sorted(kept, key=lambda option: (option.name.casefold(), option.entity.key))
