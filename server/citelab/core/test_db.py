import tempfile
import unittest
from dataclasses import replace

from server.citelab.config import Settings
from server.citelab.core.db import init_db, session_scope, sqlite_path
from server.citelab.core.models import Project


class TestSessionScope(unittest.TestCase):
    def test_commits_on_success_and_rolls_back_on_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = replace(Settings.from_env(), db_url=f"sqlite:///{tmp}/nested/scope.db")
            init_db(settings)
            with session_scope(settings) as db:
                db.add(Project(id="kept", name="p"))
            with self.assertRaises(RuntimeError):
                with session_scope(settings) as db:
                    db.add(Project(id="lost", name="p"))
                    db.flush()
                    raise RuntimeError("boom")

            with session_scope(settings) as db:
                self.assertIsNotNone(db.get(Project, "kept"))
                self.assertIsNone(db.get(Project, "lost"))

    def test_read_only_scope_never_writes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = replace(Settings.from_env(), db_url=f"sqlite:///{tmp}/scope.db")
            init_db(settings)
            with session_scope(settings, read_only=True) as db:
                db.add(Project(id="p1", name="p"))
                db.flush()
            with session_scope(settings) as db:
                self.assertIsNone(db.get(Project, "p1"))


class TestSqlitePath(unittest.TestCase):
    def test_only_file_backed_sqlite_has_a_path(self) -> None:
        self.assertEqual(sqlite_path("sqlite:///./data/citelab.db"), "./data/citelab.db")
        self.assertIsNone(sqlite_path("sqlite://"))
        self.assertIsNone(sqlite_path("sqlite:///:memory:"))
        self.assertIsNone(sqlite_path("postgresql://user@localhost/citelab"))


if __name__ == "__main__":
    unittest.main()
