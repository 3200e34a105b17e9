import tempfile
import unittest
from dataclasses import replace

from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.core.db import get_sessionmaker, init_db
from server.citelab.core.models import Project


def _settings(tmp: str, **overrides) -> Settings:
    return replace(Settings.from_env(), db_url=f"sqlite:///{tmp}/cache.db", cache_enabled=True, **overrides)


class TestCache(unittest.TestCase):
    def test_set_then_get_counts_hit_and_miss(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = _settings(tmp)
            init_db(settings)
            cache = Cache(settings=settings)

            self.assertEqual(cache.get_json("ns", ["a"]), (False, None))
            self.assertTrue(cache.set_json("ns", ["a"], {"x": 1}, ttl_seconds=60))
            self.assertEqual(cache.get_json("ns", ["a"]), (True, {"x": 1}))

            totals = cache.debug_snapshot()["totals"]
            self.assertEqual(totals.get("json_get_miss"), 1)
            self.assertEqual(totals.get("json_get_hit"), 1)
            self.assertEqual(totals.get("json_set_ok"), 1)

    def test_non_positive_ttl_is_not_stored(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = _settings(tmp)
            init_db(settings)
            cache = Cache(settings=settings)
            self.assertFalse(cache.set_json("ns", ["a"], 1, ttl_seconds=0))
            self.assertEqual(cache.get_json("ns", ["a"]), (False, None))

    def test_get_many_maps_indexes_of_live_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = _settings(tmp)
            init_db(settings)
            cache = Cache(settings=settings)
            cache.set_json("ns", ["a"], "A", ttl_seconds=60)
            cache.set_json("ns", ["c"], "C", ttl_seconds=60)

            found = cache.get_many_json("ns", [["a"], ["b"], ["c"]])
            self.assertEqual(found, {0: "A", 2: "C"})
            self.assertEqual(cache.get_many_json("ns", []), {})

    def test_scopes_are_isolated_and_invalidate_drops_one_scope(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = _settings(tmp)
            init_db(settings)
            cache = Cache(settings=settings)
            one = cache.scoped("project:1")
            two = cache.scoped("project:2")
            one.set_json("graph.result", ["k"], 1, ttl_seconds=60)
            two.set_json("graph.result", ["k"], 2, ttl_seconds=60)

            self.assertEqual(one.get_json("graph.result", ["k"]), (True, 1))
            self.assertEqual(one.invalidate("graph.result"), 1)
            self.assertEqual(one.get_json("graph.result", ["k"]), (False, None))
            self.assertEqual(two.get_json("graph.result", ["k"]), (True, 2))
            self.assertIs(one.debug_stats, cache.debug_stats)

    def test_disabled_cache_never_stores(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = replace(_settings(tmp), cache_enabled=False)
            init_db(settings)
            cache = Cache(settings=settings)
            self.assertFalse(cache.set_json("ns", ["a"], 1, ttl_seconds=60))
            self.assertEqual(cache.get_json("ns", ["a"]), (False, None))
            self.assertFalse(cache.debug_snapshot()["enabled"])


    def test_write_blocked_by_an_open_transaction_reports_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = _settings(tmp, db_busy_timeout_ms=100)
            init_db(settings)
            cache = Cache(settings=settings)
            writer = get_sessionmaker(settings)()
            try:
                writer.add(Project(name="p"))
                writer.flush()
                self.assertFalse(cache.set_json("ns", ["a"], 1, ttl_seconds=60))
                writer.commit()
            finally:
                writer.close()

            self.assertTrue(cache.set_json("ns", ["a"], 1, ttl_seconds=60))
            self.assertEqual(cache.get_json("ns", ["a"]), (True, 1))
            self.assertEqual(cache.debug_snapshot()["totals"].get("json_set_error"), 1)

if __name__ == "__main__":
    unittest.main()
