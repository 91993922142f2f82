import sys
import tempfile
from pathlib import Path
import unittest
from unittest import mock

from sqlalchemy import create_engine, inspect, text

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from mistroll.infrastructure.db.sql import migrate
from mistroll.infrastructure.db.sql.migrate import (
    apply_migrations,
    build_linear_migration_plan,
    discover_linear_migration_files,
    execute_linear_migration_plan,
    split_sql_statements,
)


class MigrationRunnerTests(unittest.TestCase):
    def test_packaged_migrations_are_linear(self) -> None:
        names = [path.name for path in discover_linear_migration_files()]

        self.assertEqual(["001_create_rolls.sql", "002_create_roll_tags.sql"], names)

    def test_splitter_drops_comments_and_keeps_quoted_semicolons(self) -> None:
        statements = split_sql_statements(
            "-- header; not a statement\nINSERT INTO demo(txt) VALUES ('alpha;beta');\nSELECT 1"
        )

        self.assertEqual(["INSERT INTO demo(txt) VALUES ('alpha;beta')", "SELECT 1"], statements)

    def test_numbering_gap_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            migration_dir = Path(tmp)
            (migration_dir / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (migration_dir / "003_third.sql").write_text("SELECT 1;", encoding="utf-8")

            with self.assertRaises(ValueError):
                discover_linear_migration_files(migration_dir)

    def test_badly_named_file_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            migration_dir = Path(tmp)
            (migration_dir / "001_first.sql").write_text("SELECT 1;", encoding="utf-8")
            (migration_dir / "second.sql").write_text("SELECT 1;", encoding="utf-8")

            with self.assertRaises(ValueError):
                discover_linear_migration_files(migration_dir)

    def test_apply_is_idempotent(self) -> None:
        engine = create_engine("sqlite:///:memory:", future=True)
        plans = build_linear_migration_plan()
        try:
            with engine.begin() as conn:
                first = apply_migrations(conn, plans)
                second = apply_migrations(conn, plans)
                applied = conn.execute(text("SELECT COUNT(*) FROM schema_migrations")).scalar_one()
            tables = set(inspect(engine).get_table_names())
        finally:
            engine.dispose()

        self.assertEqual(2, first[0])
        self.assertEqual(sum(len(plan.statements) for plan in plans), first[1])
        self.assertEqual((0, 0), second)
        self.assertEqual(2, applied)
        self.assertTrue({"rolls", "roll_tags", "schema_migrations"} <= tables)

    def test_execute_plan_against_file_database(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite:///{Path(tmp) / 'rolls.db'}"

            applied_files, _ = execute_linear_migration_plan(build_linear_migration_plan(), url)

            self.assertEqual(2, applied_files)

    def test_main_dry_run_executes_nothing(self) -> None:
        with mock.patch.object(migrate, "execute_linear_migration_plan") as execute, mock.patch("builtins.print") as printed:
            migrate.main(["--dry-run"])

        execute.assert_not_called()
        output = "\n".join(str(call.args[0]) for call in printed.call_args_list)
        self.assertIn("001_create_rolls.sql", output)
        self.assertIn("Dry run complete", output)

    def test_main_uses_explicit_database_url(self) -> None:
        with mock.patch.object(migrate, "execute_linear_migration_plan", return_value=(2, 6)) as execute:
            with mock.patch("builtins.print"):
                migrate.main(["--database-url", "sqlite:///elsewhere.db"])

        self.assertEqual("sqlite:///elsewhere.db", execute.call_args.args[1])


if __name__ == "__main__":
    unittest.main()
