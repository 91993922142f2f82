import sys
from pathlib import Path
import unittest

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from mistroll.application.services.tag_consumption import burn_operations
from mistroll.domain.models.character import BackpackItem, Character
from mistroll.domain.models.roll import Roll, RollStatus
from mistroll.domain.models.tag_entity import TagEntity, TagParentType
from mistroll.infrastructure.db.sql.atomic_persistence import create_sql_atomic_persistor
from mistroll.infrastructure.db.sql.migrate import apply_migrations, build_linear_migration_plan
from mistroll.infrastructure.db.sql.repos import SqlRollRepository
from mistroll.infrastructure.inmemory.inmemory_character_repo import InMemoryCharacterRepository

CLEVER = TagEntity(TagParentType.CHARACTER_THEME_TAG, 100, 1)
ROPE = TagEntity(TagParentType.CHARACTER_BACKPACK_ITEM, 200, 1)


class SqlAtomicPersistenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        with self.engine.begin() as conn:
            apply_migrations(conn, build_linear_migration_plan())
            conn.execute(text("CREATE TABLE burn_log (roll_id INTEGER NOT NULL, tag TEXT NOT NULL)"))
        self.repo = SqlRollRepository("g1", session_factory=self.SessionLocal)
        self.roll_id = self.repo.create(
            Roll(
                id=None,
                creator_id="u1",
                character_id=1,
                scene_id="s1",
                status=RollStatus.CONFIRMED,
                confirmed_by="n1",
                help_tags={CLEVER},
                burned_tags={CLEVER},
            )
        )
        self.persist = create_sql_atomic_persistor(self.repo)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _log_burn(self, session) -> None:
        session.execute(
            text("INSERT INTO burn_log (roll_id, tag) VALUES (:rid, :tag)"),
            {"rid": self.roll_id, "tag": CLEVER.key},
        )

    def _burn_log_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM burn_log")).scalar_one()

    def test_status_and_operations_commit_together(self) -> None:
        self.persist(self.roll_id, {"status": RollStatus.EXECUTED}, [self._log_burn])

        self.assertEqual(RollStatus.EXECUTED, self.repo.get(self.roll_id).status)
        self.assertEqual(1, self._burn_log_count())

    def test_failing_operation_rolls_back_status_and_earlier_operations(self) -> None:
        def _fail(_session) -> None:
            raise RuntimeError("character store unavailable")

        with self.assertRaises(RuntimeError):
            self.persist(self.roll_id, {"status": RollStatus.EXECUTED}, [self._log_burn, _fail])

        self.assertEqual(RollStatus.CONFIRMED, self.repo.get(self.roll_id).status)
        self.assertEqual(0, self._burn_log_count())

    def test_operations_receive_the_open_session(self) -> None:
        seen = {"dialect": None}

        def _capture(session) -> None:
            seen["dialect"] = session.get_bind().dialect.name

        self.persist(self.roll_id, {"status": RollStatus.EXECUTED}, [_capture])

        self.assertEqual("sqlite", seen["dialect"])


class SqlBurnConsumptionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        self.addCleanup(self.engine.dispose)
        with self.engine.begin() as conn:
            apply_migrations(conn, build_linear_migration_plan())
        self.repo = SqlRollRepository("g1", session_factory=sessionmaker(bind=self.engine, future=True))
        self.characters = InMemoryCharacterRepository(
            [Character(id=1, name="Ayla", user_id="u1", backpack=[BackpackItem(200, "Rope")])]
        )
        self.roll_id = self.repo.create(
            Roll(
                id=None,
                creator_id="u1",
                character_id=1,
                scene_id="s1",
                status=RollStatus.CONFIRMED,
                confirmed_by="n1",
                help_tags={ROPE},
                burned_tags={ROPE},
            )
        )
        self.persist = create_sql_atomic_persistor(self.repo, self.characters)

    def _operations(self):
        return burn_operations(self.repo.get(self.roll_id), self.characters)

    def test_burned_item_is_spent_with_the_executed_status(self) -> None:
        self.persist(self.roll_id, {"status": RollStatus.EXECUTED}, self._operations())

        self.assertEqual(RollStatus.EXECUTED, self.repo.get(self.roll_id).status)
        self.assertEqual([], self.characters.get_by_id(1).backpack)

    def test_failed_commit_keeps_the_burned_item(self) -> None:
        def _refuse_commit(_conn) -> None:
            raise RuntimeError("database went away")

        operations = self._operations()
        event.listen(self.engine, "commit", _refuse_commit)
        try:
            with self.assertRaises(RuntimeError):
                self.persist(self.roll_id, {"status": RollStatus.EXECUTED}, operations)
        finally:
            event.remove(self.engine, "commit", _refuse_commit)

        self.assertEqual(RollStatus.CONFIRMED, self.repo.get(self.roll_id).status)
        self.assertEqual(["Rope"], [item.item for item in self.characters.get_by_id(1).backpack])


if __name__ == "__main__":
    unittest.main()
