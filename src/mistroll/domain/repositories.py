from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional

from mistroll.domain.models.character import Character
from mistroll.domain.models.roll import Roll, RollStatus
from mistroll.domain.models.tag import TagData
from mistroll.domain.models.tag_entity import TagEntity


@dataclass(frozen=True)
class ThemeImprovement:
    character_id: int
    theme_id: int
    theme_name: str
    improvements: int
    ready_to_develop: bool = False


@dataclass(frozen=True)
class TagOption:
    """A pickable tag as a collaborator store lists it."""

    entity: TagEntity
    name: str
    is_weakness: bool = False
    is_burned: bool = False


class CharacterRepository(ABC):
    @abstractmethod
    def get(self, owner_id: str, character_id: int) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, character_id: int) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        raise NotImplementedError

    @abstractmethod
    def mark_burned(self, character_id: int, entities: Iterable[TagEntity]) -> None:
        raise NotImplementedError

    @abstractmethod
    def update(self, character_id: int, changes: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_tags(self, character_id: int, entities: Iterable[TagEntity]) -> None:
        raise NotImplementedError

    @abstractmethod
    def increment_theme_improvements(self, entities: Iterable[TagEntity]) -> List[ThemeImprovement]:
        raise NotImplementedError

    def list_tags(self, character_id: int) -> List[TagOption]:
        """Optional helper for pickers; stores without option listing expose nothing."""
        return []


class SceneRepository(ABC):
    @abstractmethod
    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        raise NotImplementedError

    @abstractmethod
    def list_tags(self, scene_id: str) -> List[TagOption]:
        raise NotImplementedError


class FellowshipRepository(ABC):
    @abstractmethod
    def get_tag_data(self, entity: TagEntity) -> Optional[TagData]:
        raise NotImplementedError

    @abstractmethod
    def list_tags(self, fellowship_id: int) -> List[TagOption]:
        raise NotImplementedError


class RollRepository(ABC):
    @abstractmethod
    def create(self, roll: Roll) -> int:
        raise NotImplementedError

    @abstractmethod
    def get(self, roll_id: int) -> Optional[Roll]:
        raise NotImplementedError

    @abstractmethod
    def update(self, roll_id: int, changes: Mapping[str, Any]) -> Roll:
        raise NotImplementedError

    @abstractmethod
    def delete_invalid_tags(self, roll_id: int, is_valid: Callable[[TagEntity], bool]) -> int:
        raise NotImplementedError

    @abstractmethod
    def list_by_scene(self, scene_id: str) -> List[Roll]:
        raise NotImplementedError

    @abstractmethod
    def list_by_status(self, status: RollStatus) -> List[Roll]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, roll_id: int) -> bool:
        raise NotImplementedError


class NarratorPolicy(ABC):
    @abstractmethod
    def is_narrator(self, actor_id: str, guild_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_configured(self, guild_id: str) -> bool:
        raise NotImplementedError
