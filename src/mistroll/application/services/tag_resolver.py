from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from mistroll.domain.models.tag import ResolvedTag, TagData, TagKind, looks_like_status
from mistroll.domain.models.tag_entity import BURNABLE_PARENT_TYPES, TagEntity, TagParentType
from mistroll.domain.repositories import CharacterRepository, FellowshipRepository, SceneRepository


logger = logging.getLogger(__name__)

_STATUS_PARENT_TYPES = frozenset({TagParentType.CHARACTER_STATUS, TagParentType.SCENE_STATUS})
_SCENE_PARENT_TYPES = frozenset({TagParentType.SCENE_TAG, TagParentType.SCENE_STATUS})


class TagResolver:
    """Turns tag references into their current name and kind.

    Every lookup goes back to the owning store, so renamed or deleted tags are
    seen immediately. A reference whose parent record no longer exists resolves
    to ``None`` and is treated as invalid by callers.
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

    def resolve(self, entity: TagEntity | None) -> Optional[ResolvedTag]:
        data = self._lookup(entity)
        if data is None or not str(data.name or "").strip():
            return None
        kind = self._classify(entity, data)
        burnable = (
            kind == TagKind.TAG
            and entity.parent_type in BURNABLE_PARENT_TYPES
            and not data.is_burned
        )
        return ResolvedTag(name=str(data.name).strip(), kind=kind, burnable=burnable)

    def is_valid(self, entity: TagEntity | None) -> bool:
        return self.resolve(entity) is not None

    def is_burnable(self, entity: TagEntity | None) -> bool:
        resolved = self.resolve(entity)
        return bool(resolved and resolved.burnable)

    def partition_valid(self, entities: Iterable[TagEntity]) -> Tuple[List[TagEntity], List[TagEntity]]:
        valid: List[TagEntity] = []
        invalid: List[TagEntity] = []
        for entity in entities:
            (valid if self.is_valid(entity) else invalid).append(entity)
        if invalid:
            logger.debug(
                "Dangling tag references found",
                extra={"invalid_keys": [entity.key for entity in invalid]},
            )
        return valid, invalid

    def display_name(self, entity: TagEntity, *, fallback: str = "(removed tag)") -> str:
        resolved = self.resolve(entity)
        return resolved.name if resolved else fallback

    def _lookup(self, entity: TagEntity | None) -> Optional[TagData]:
        if entity is None:
            return None
        if entity.parent_type.is_character_owned:
            return self.character_repo.get_tag_data(entity)
        if entity.parent_type in _SCENE_PARENT_TYPES:
            return self.scene_repo.get_tag_data(entity)
        if entity.parent_type == TagParentType.FELLOWSHIP_TAG:
            return self.fellowship_repo.get_tag_data(entity)
        return None

    @staticmethod
    def _classify(entity: TagEntity, data: TagData) -> TagKind:
        if entity.parent_type in _STATUS_PARENT_TYPES or data.kind == TagKind.STATUS:
            return TagKind.STATUS
        if data.kind == TagKind.WEAKNESS:
            return TagKind.WEAKNESS
        if looks_like_status(data.name):
            return TagKind.STATUS
        return TagKind.TAG
