from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from mistroll.domain.models.fellowship import Fellowship
from mistroll.domain.models.scene import Scene, SceneTagType
from mistroll.domain.models.tag import TagData, TagKind
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.domain.repositories import FellowshipRepository, SceneRepository, TagOption


class InMemorySceneRepository(SceneRepository):
    def __init__(self, scenes: Iterable[Scene] = ()) -> None:
        self._scenes: Dict[str, Scene] = {str(scene.id): scene for scene in scenes}

    def save(self, scene: Scene) -> None:
        self._scenes[str(scene.id)] = scene

    def get(self, scene_id: str) -> Optional[Scene]:
        return self._scenes.get(str(scene_id))

    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        for scene in self._scenes.values():
            tag = scene.find_tag(entity.parent_id)
            if tag is None:
                continue
            if entity.parent_type == TagParentType.SCENE_STATUS and tag.tag_type != SceneTagType.STATUS:
                return None
            if entity.parent_type == TagParentType.SCENE_TAG and tag.tag_type != SceneTagType.TAG:
                return None
            kind = TagKind.STATUS if tag.tag_type == SceneTagType.STATUS else TagKind.TAG
            return TagData(tag.tag, kind)
        return None

    def list_tags(self, scene_id: str) -> List[TagOption]:
        scene = self._scenes.get(str(scene_id))
        if scene is None:
            return []
        options: List[TagOption] = []
        for tag in scene.roll_tags():
            parent_type = TagParentType.SCENE_STATUS if tag.tag_type == SceneTagType.STATUS else TagParentType.SCENE_TAG
            options.append(TagOption(TagEntity(parent_type, tag.id), tag.tag))
        return options


class InMemoryFellowshipRepository(FellowshipRepository):
    def __init__(self, fellowships: Iterable[Fellowship] = ()) -> None:
        self._fellowships: Dict[int, Fellowship] = {fellowship.id: fellowship for fellowship in fellowships}

    def save(self, fellowship: Fellowship) -> None:
        self._fellowships[fellowship.id] = fellowship

    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        for fellowship in self._fellowships.values():
            tag = fellowship.find_tag(entity.parent_id)
            if tag is not None:
                return TagData(tag.tag, TagKind.WEAKNESS if tag.is_weakness else TagKind.TAG)
        return None

    def list_tags(self, fellowship_id: int) -> List[TagOption]:
        fellowship = self._fellowships.get(fellowship_id)
        if fellowship is None:
            return []
        return [
            TagOption(TagEntity(TagParentType.FELLOWSHIP_TAG, tag.id), tag.tag, is_weakness=tag.is_weakness)
            for tag in fellowship.tags
        ]
