from dataclasses import dataclass, field
from typing import List, Optional


THEME_IMPROVEMENTS_TO_DEVELOP = 3


@dataclass
class ThemeTag:
    id: int
    tag: str
    is_weakness: bool = False
    is_burned: bool = False


@dataclass
class CharacterTheme:
    id: int
    name: str
    tags: List[ThemeTag] = field(default_factory=list)
    is_burned: bool = False
    improvements: int = 0

    def find_tag(self, tag_id: int) -> Optional[ThemeTag]:
        for tag in self.tags:
            if tag.id == tag_id:
                return tag
        return None


@dataclass
class BackpackItem:
    id: int
    item: str


@dataclass
class StoryTag:
    id: int
    tag: str


@dataclass
class CharacterStatus:
    id: int
    status: str
    power_levels: List[int] = field(default_factory=list)


@dataclass
class Character:
    id: int
    name: str
    user_id: Optional[str] = None
    themes: List[CharacterTheme] = field(default_factory=list)
    backpack: List[BackpackItem] = field(default_factory=list)
    story_tags: List[StoryTag] = field(default_factory=list)
    statuses: List[CharacterStatus] = field(default_factory=list)
    fellowship_id: Optional[int] = None

    def find_theme(self, theme_id: int) -> Optional[CharacterTheme]:
        for theme in self.themes:
            if theme.id == theme_id:
                return theme
        return None

    def find_theme_tag(self, tag_id: int) -> tuple[Optional[CharacterTheme], Optional[ThemeTag]]:
        for theme in self.themes:
            tag = theme.find_tag(tag_id)
            if tag is not None:
                return theme, tag
        return None, None

    def find_backpack_item(self, item_id: int) -> Optional[BackpackItem]:
        return next((item for item in self.backpack if item.id == item_id), None)

    def find_story_tag(self, tag_id: int) -> Optional[StoryTag]:
        return next((tag for tag in self.story_tags if tag.id == tag_id), None)

    def find_status(self, status_id: int) -> Optional[CharacterStatus]:
        return next((status for status in self.statuses if status.id == status_id), None)
