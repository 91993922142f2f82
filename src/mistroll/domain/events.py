from dataclasses import dataclass, field
from typing import Optional, Tuple

from mistroll.domain.models.tag_entity import TagEntity


@dataclass
class RollSubmitted:
    roll_id: int
    creator_id: str
    scene_id: str
    is_reaction: bool = False
    reaction_to_roll_id: Optional[int] = None


@dataclass
class RollAmended:
    roll_id: int
    actor_id: str
    previous_status: str


@dataclass
class RollConfirmed:
    roll_id: int
    confirmed_by: str
    reconfirmed: bool = False


@dataclass
class RollExecuted:
    roll_id: int
    creator_id: str
    character_id: Optional[int]
    power: int
    total: int
    outcome: str
    strategy: str
    hinder_tags: Tuple[TagEntity, ...] = field(default_factory=tuple)


@dataclass
class InvalidTagsPurged:
    roll_id: Optional[int]
    removed: int
    context: str


@dataclass
class ThemeDevelopmentReady:
    character_id: int
    theme_id: int
    theme_name: str
    improvements: int
