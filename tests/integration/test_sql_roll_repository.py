import sys
from pathlib import Path
import unittest
from unittest import mock

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from mistroll.domain.models.roll import Roll, RollStatus
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.infrastructure.db.sql import repos
from mistroll.infrastructure.db.sql.migrate import apply_migrations, build_linear_migration_plan
from mistroll.infrastructure.db.sql.repos import SqlRollRepository

CLEVER = TagEntity(TagParentType.CHARACTER_THEME_TAG, 100, 1)
ROPE = TagEntity(TagParentType.CHARACTER_BACKPACK_ITEM, 200, 1)
SWORD = TagEntity(TagParentType.CHARACTER_THEME_TAG, 120, 2)
ALLEY = TagEntity(TagParentType.SCENE_TAG, 500)
FOG = TagEntity(TagParentType.SCENE_STATUS, "fog")


def _draft(scene_id: str = "s1", **fields) -> Roll:
    return Roll(id=None, creator_id="u1", character_id=1, scene_id=scene_id, **fields)


class SqlRollRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        with self.engine.begin() as conn:
            apply_migrations(conn, build_linear_migration_plan())
        self.repo = SqlRollRepository("g1", session_factory=self.SessionLocal)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_round_trip_keeps_tags_burn_and_attribution(self) -> None:
        roll_id = self.repo.create(
            _draft(
                description="Climb the wall",
                narration_link="https://discord.com/channels/1/2/3",
                might_modifier=-1,
                help_tags={CLEVER, SWORD},
                hinder_tags={ALLEY, FOG},
                burned_tags={CLEVER},
                help_source_character={SWORD: 2},
            )
        )

        roll = self.repo.get(roll_id)

        self.assertEqual(1, roll_id)
        self.assertEqual("Climb the wall", roll.description)
        self.assertEqual(-1, roll.might_modifier)
        self.assertEqual(RollStatus.PROPOSED, roll.status)
        self.assertEqual(frozenset({CLEVER, SWORD}), roll.help_tags)
        self.assertEqual(frozenset({ALLEY, FOG}), roll.hinder_tags)
        self.assertEqual(frozenset({CLEVER}), roll.burned_tags)
        self.assertEqual({SWORD: 2}, dict(roll.help_source_character))
        stored_sword = next(entity for entity in roll.help_tags if entity == SWORD)
        self.assertEqual(2, stored_sword.character_id)
        self.assertIsNotNone(roll.created_at.tzinfo)

    def test_reaction_fields_are_stored(self) -> None:
        roll_id = self.repo.create(_draft(is_reaction=True, reaction_to_roll_id=7))

        roll = self.repo.get(roll_id)

        self.assertTrue(roll.is_reaction)
        self.assertEqual(7, roll.reaction_to_roll_id)

    def test_ids_are_allocated_per_guild(self) -> None:
        other_guild = SqlRollRepository("g2", session_factory=self.SessionLocal)

        self.assertEqual(1, self.repo.create(_draft()))
        self.assertEqual(2, self.repo.create(_draft()))
        self.assertEqual(1, other_guild.create(_draft()))
        self.assertEqual([1], [roll.id for roll in other_guild.list_by_scene("s1")])

    def test_update_rewrites_fields_and_tags(self) -> None:
        roll_id = self.repo.create(_draft(help_tags={CLEVER, ROPE}, burned_tags={ROPE}))

        self.repo.update(
            roll_id,
            {
                "status": RollStatus.CONFIRMED,
                "confirmed_by": "n1",
                "help_tags": frozenset({CLEVER}),
                "burned_tags": frozenset(),
                "hinder_tags": frozenset({ALLEY}),
            },
        )

        roll = self.repo.get(roll_id)
        self.assertEqual(RollStatus.CONFIRMED, roll.status)
        self.assertEqual("n1", roll.confirmed_by)
        self.assertEqual(frozenset({CLEVER}), roll.help_tags)
        self.assertEqual(frozenset({ALLEY}), roll.hinder_tags)
        self.assertEqual(frozenset(), roll.burned_tags)

    def test_update_rejects_executed_and_missing_rolls(self) -> None:
        roll_id = self.repo.create(_draft(status=RollStatus.EXECUTED, confirmed_by="n1"))

        with self.assertRaises(ValueError):
            self.repo.update(roll_id, {"description": "again"})
        with self.assertRaises(KeyError):
            self.repo.update(99, {"description": "again"})

    def test_delete_invalid_tags_drops_rows(self) -> None:
        roll_id = self.repo.create(_draft(help_tags={CLEVER, ROPE}, hinder_tags={ALLEY}, burned_tags={ROPE}))

        removed = self.repo.delete_invalid_tags(roll_id, lambda entity: entity not in (ROPE, ALLEY))

        roll = self.repo.get(roll_id)
        self.assertEqual(2, removed)
        self.assertEqual(frozenset({CLEVER}), roll.all_tags)
        self.assertEqual(frozenset(), roll.burned_tags)
        with self.engine.connect() as conn:
            count = conn.execute(
                text("SELECT COUNT(*) FROM roll_tags WHERE guild_id = 'g1' AND roll_id = :rid"), {"rid": roll_id}
            ).scalar_one()
        self.assertEqual(1, count)

    def test_lists_filter_and_order_by_id(self) -> None:
        first = self.repo.create(_draft("s1", help_tags={CLEVER}))
        self.repo.create(_draft("s2"))
        third = self.repo.create(_draft("s1", status=RollStatus.CONFIRMED, confirmed_by="n1"))

        by_scene = self.repo.list_by_scene("s1")

        self.assertEqual([first, third], [roll.id for roll in by_scene])
        self.assertEqual(frozenset({CLEVER}), by_scene[0].help_tags)
        self.assertEqual([third], [roll.id for roll in self.repo.list_by_status(RollStatus.CONFIRMED)])
        self.assertEqual([], self.repo.list_by_scene("missing"))

    def test_delete_removes_roll_and_tags(self) -> None:
        roll_id = self.repo.create(_draft(help_tags={CLEVER}))

        self.assertTrue(self.repo.delete(roll_id))
        self.assertFalse(self.repo.delete(roll_id))
        self.assertIsNone(self.repo.get(roll_id))

    def test_default_session_factory_is_module_session(self) -> None:
        with mock.patch.object(repos, "SessionLocal", self.SessionLocal):
            repo = SqlRollRepository("g1")
            roll_id = repo.create(_draft())

            self.assertEqual(roll_id, repo.get(roll_id).id)


if __name__ == "__main__":
    unittest.main()
