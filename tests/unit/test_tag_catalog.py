import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from mistroll.application.services.tag_catalog import TagCatalog
from mistroll.domain.models.character import BackpackItem, Character, CharacterTheme, ThemeTag
from mistroll.domain.models.fellowship import Fellowship, FellowshipTag
from mistroll.domain.models.scene import Scene, SceneTag, SceneTagType
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.infrastructure.inmemory.inmemory_character_repo import InMemoryCharacterRepository
from mistroll.infrastructure.inmemory.inmemory_scene_repo import (
    InMemoryFellowshipRepository,
    InMemorySceneRepository,
)


def _catalog() -> TagCatalog:
    characters = InMemoryCharacterRepository(
        [
            Character(
                id=1,
                name="Ayla",
                user_id="u1",
                themes=[
                    CharacterTheme(
                        id=10,
                        name="Tinkerer",
                        tags=[
                            ThemeTag(100, "clever"),
                            ThemeTag(102, "Reckless", is_weakness=True),
                            ThemeTag(103, "Spent", is_burned=True),
                        ],
                    )
                ],
                backpack=[BackpackItem(200, "Anchor")],
                fellowship_id=1,
            ),
            Character(id=2, name="Bram", user_id="u2", themes=[CharacterTheme(id=20, name="Blade")]),
        ]
    )
    scenes = InMemorySceneRepository(
        [
            Scene(
                id="s1",
                tags=[
                    SceneTag(500, "Dark alley"),
                    SceneTag(501, "shaken-3", SceneTagType.STATUS),
                    SceneTag(502, "Closing in", SceneTagType.LIMIT),
                ],
            )
        ]
    )
    fellowships = InMemoryFellowshipRepository(
        [Fellowship(id=1, name="Crew", tags=[FellowshipTag(600, "Old friends"), FellowshipTag(601, "Bickering", True)])]
    )
    return TagCatalog(characters, scenes, fellowships)


class TagCatalogTests(unittest.TestCase):
    def test_help_options_are_sorted_and_skip_weaknesses(self) -> None:
        names = [option.name for option in _catalog().help_options(1, "s1")]

        self.assertEqual(["Anchor", "clever", "Dark alley", "Old friends", "shaken-3", "Tinkerer"], names)

    def test_hinder_options_include_weaknesses(self) -> None:
        names = {option.name for option in _catalog().hinder_options(1, "s1")}

        self.assertIn("Reckless", names)
        self.assertIn("Bickering", names)
        self.assertNotIn("Closing in", names)
        self.assertNotIn("Spent", names)

    def test_excluded_tags_are_left_out(self) -> None:
        alley = TagEntity(TagParentType.SCENE_TAG, 500)

        options = _catalog().hinder_options(1, "s1", exclude=[alley])

        self.assertNotIn(alley, [option.entity for option in options])

    def test_character_without_fellowship_gets_only_own_and_scene_tags(self) -> None:
        names = [option.name for option in _catalog().help_options(2, "s1")]

        self.assertEqual(["Blade", "Dark alley", "shaken-3"], names)

    def test_missing_character_still_lists_scene_tags(self) -> None:
        names = [option.name for option in _catalog().help_options(None, "s1")]

        self.assertEqual(["Dark alley", "shaken-3"], names)

    def test_assist_options_come_from_the_helper_sheet(self) -> None:
        entities = [option.entity for option in _catalog().character_help_options(1)]

        self.assertIn(TagEntity(TagParentType.CHARACTER_THEME_TAG, 100, 1), entities)
        self.assertNotIn(TagEntity(TagParentType.CHARACTER_THEME_TAG, 102, 1), entities)
        self.assertNotIn(TagEntity(TagParentType.SCENE_TAG, 500), entities)


if __name__ == "__main__":
    unittest.main()
