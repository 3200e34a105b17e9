import tempfile
import threading
import time
import unittest
from dataclasses import replace

from server.citelab.config import Settings
from server.citelab.core.db import init_db, session_scope
from server.citelab.core.models import Article, Project, ProjectArticle
from server.citelab.graph.service import GraphService
from server.citelab.graph.types import GraphParams


class _SlowBuilder:
    def __init__(self) -> None:
        self.calls = 0
        self.release = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, db, project_id, params, **kwargs):  # type: ignore[no-untyped-def]
        with self._lock:
            self.calls += 1
        self.release.wait(timeout=5)
        return {"project": project_id, "depth": params.depth, "nodes": []}


class TestGraphService(unittest.TestCase):
    def _settings(self, tmp: str) -> Settings:
        settings = replace(
            Settings.from_env(),
            db_url=f"sqlite:///{tmp}/service.db",
            cache_enabled=True,
            graph_result_ttl_seconds=600,
            enrich_enabled=False,
        )
        init_db(settings)
        return settings

    def test_builds_once_then_serves_from_cache(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = self._settings(tmp)
            with session_scope(settings) as db:
                project = Project(id="p1", name="p")
                article = Article(id="a1", pmid="1", reference_pmids=["9"])
                db.add_all([project, article])
                db.flush()
                db.add(ProjectArticle(project_id="p1", article_id="a1"))

            service = GraphService(settings)
            first = service.get_graph("p1", GraphParams(depth=2))
            self.assertEqual(first["stats"]["level_counts"]["level2"], 1)

            with session_scope(settings) as db:
                db.get(Article, "a1").reference_pmids = ["9", "10"]

            cached = service.get_graph("p1", GraphParams.from_query({"depth": "2"}))
            self.assertEqual(cached, first)

            self.assertEqual(service.invalidate("p1"), 1)
            rebuilt = service.get_graph("p1", GraphParams(depth=2))
            self.assertEqual(rebuilt["stats"]["level_counts"]["level2"], 2)

    def test_concurrent_identical_requests_share_one_build(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = self._settings(tmp)
            builder = _SlowBuilder()
            service = GraphService(settings, builder=builder)
            results: list[dict] = []

            def _request() -> None:
                results.append(service.get_graph("p1", GraphParams(depth=3)))

            threads = [threading.Thread(target=_request) for _ in range(4)]
            for t in threads:
                t.start()
            deadline = time.monotonic() + 5
            while builder.calls == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            time.sleep(0.1)
            builder.release.set()
            for t in threads:
                t.join(timeout=5)

            self.assertEqual(builder.calls, 1)
            self.assertEqual(len(results), 4)
            self.assertTrue(all(r == {"project": "p1", "depth": 3, "nodes": []} for r in results))

    def test_failed_build_propagates_and_is_not_cached(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = self._settings(tmp)
            calls = []

            def _broken(db, project_id, params, **kwargs):  # type: ignore[no-untyped-def]
                calls.append(project_id)
                raise LookupError("project not found: p9")

            service = GraphService(settings, builder=_broken)
            for _ in range(2):
                with self.assertRaises(LookupError):
                    service.get_graph("p9", GraphParams())
            self.assertEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
