import json
import os
import subprocess
import sys
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from server.citelab.config import Settings
from server.citelab.core.db import get_sessionmaker, init_db
from server.citelab.core.errors import NotFoundError
from server.citelab.core.models import Article, ArticleStatus, Project, ProjectArticle
from server.citelab.graph.builder import build_citation_graph
from server.citelab.graph.types import GraphParams

_REPO_ROOT = Path(__file__).resolve().parents[3]


class _GraphCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        settings = replace(Settings.from_env(), db_url=f"sqlite:///{self._tmp.name}/graph.db")
        init_db(settings)
        self.db = get_sessionmaker(settings)()
        self.project = Project(name="review")
        self.db.add(self.project)
        self.db.flush()

    def tearDown(self) -> None:
        self.db.close()
        self._tmp.cleanup()

    def article(self, **fields) -> Article:
        article = Article(**fields)
        self.db.add(article)
        self.db.flush()
        return article

    def member(self, status: str = ArticleStatus.candidate.value, source_query: str | None = None, **fields) -> Article:
        article = self.article(**fields)
        self.db.add(
            ProjectArticle(project_id=self.project.id, article_id=article.id, status=status, source_query=source_query)
        )
        self.db.flush()
        return article

    def build(self, **params) -> dict:
        return build_citation_graph(self.db, self.project.id, GraphParams(**params))


def _nodes_by_id(graph: dict) -> dict[str, dict]:
    return {n["id"]: n for n in graph["nodes"]}


def _links(graph: dict) -> set[tuple[str, str]]:
    return {(link["source"], link["target"]) for link in graph["links"]}


class TestLevelOne(_GraphCase):
    def test_status_filters_and_deleted_articles(self) -> None:
        kept = self.member(ArticleStatus.selected.value, pmid="1", authors=["Smith J"], year=2020)
        excluded = self.member(ArticleStatus.excluded.value, pmid="2")
        self.member(ArticleStatus.deleted.value, pmid="3")

        graph = self.build()
        self.assertEqual(set(_nodes_by_id(graph)), {kept.id, excluded.id})
        self.assertEqual(_nodes_by_id(graph)[kept.id]["label"], "Smith (2020)")
        self.assertEqual(graph["stats"]["level_counts"], {"level0": 0, "level1": 2, "level2": 0, "level3": 0})
        self.assertEqual(graph["current_depth"], 1)

        self.assertEqual(set(_nodes_by_id(self.build(filter="selected"))), {kept.id})
        self.assertEqual(set(_nodes_by_id(self.build(filter="excluded"))), {excluded.id})

    def test_year_quality_and_source_query_filters(self) -> None:
        old = self.member(pmid="1", year=1990, source_query="q1")
        new = self.member(pmid="2", year=2021, stats_quality=2, source_query="q2")

        self.assertEqual(set(_nodes_by_id(self.build(year_from=2000))), {new.id})
        self.assertEqual(set(_nodes_by_id(self.build(stats_quality=1))), {new.id})
        self.assertEqual(set(_nodes_by_id(self.build(source_queries=("q1",)))), {old.id})

        graph = self.build()
        self.assertEqual(graph["available_source_queries"], ["q1", "q2"])
        self.assertEqual(graph["year_range"], {"min": 1990, "max": 2021})

    def test_unknown_project(self) -> None:
        with self.assertRaises(NotFoundError):
            build_citation_graph(self.db, "missing", GraphParams())


class TestReferences(_GraphCase):
    def test_shared_reference_keeps_both_edges_under_link_cap(self) -> None:
        a = self.member(pmid="1", reference_pmids=["900", "901"])
        b = self.member(pmid="2", reference_pmids=["900"])

        graph = self.build(depth=2, max_links_per_node=1)
        level2 = [n for n in graph["nodes"] if n["level"] == 2]
        self.assertEqual([n["id"] for n in level2], ["pmid:900"])
        self.assertTrue(level2[0]["placeholder"])
        self.assertEqual(level2[0]["label"], "PMID:900")
        self.assertEqual(_links(graph), {(a.id, "pmid:900"), (b.id, "pmid:900")})
        self.assertEqual(graph["stats"]["available_references"], 2)

    def test_local_references_internal_links_and_dois(self) -> None:
        local = self.article(pmid="500", title="Known", authors=["Doe A"], year=2010)
        b = self.member(pmid="2")
        a = self.member(pmid="1", reference_pmids=["500", "2"], reference_dois=["10.5/Z/v2/full"])

        graph = self.build(depth=2)
        nodes = _nodes_by_id(graph)
        self.assertEqual(nodes[local.id]["level"], 2)
        self.assertFalse(nodes[local.id]["placeholder"])
        self.assertEqual(nodes["doi:10.5/z"]["source"], "crossref")
        self.assertEqual(_links(graph), {(a.id, local.id), (a.id, b.id), (a.id, "doi:10.5/z")})
        self.assertEqual(graph["stats"]["matched_internal_refs"], 1)
        self.assertEqual(graph["stats"]["articles_with_refs"], 1)

    def test_external_filters_suppress_placeholders(self) -> None:
        self.article(pmid="500", year=1980)
        recent = self.article(pmid="501", year=2015)
        self.member(pmid="1", year=2020, reference_pmids=["500", "501", "502"])

        graph = self.build(depth=2, year_from=2000)
        level2 = {n["id"] for n in graph["nodes"] if n["level"] == 2}
        self.assertEqual(level2, {recent.id})

    def test_citation_sort_prefers_highly_cited_under_tight_budget(self) -> None:
        popular = self.article(pmid="777", cited_by_count=90)
        refs = [str(100 + i) for i in range(12)] + ["777"]
        self.member(pmid="1", reference_pmids=refs)

        graph = self.build(depth=2, max_extra_nodes=10, max_links_per_node=100)
        ids = {n["id"] for n in graph["nodes"] if n["level"] == 2}
        self.assertEqual(len(ids), 10)
        self.assertIn(popular.id, ids)
        self.assertNotIn(popular.id, {n["id"] for n in self.build(depth=2, max_extra_nodes=10, sort_by="default")["nodes"]})


class TestDepthThree(_GraphCase):
    def test_citing_and_related_levels(self) -> None:
        ref = self.article(pmid="500", cited_by_pmids=["800"])
        a = self.member(pmid="1", reference_pmids=["500"], cited_by_pmids=["700"])

        graph = self.build(depth=3)
        nodes = _nodes_by_id(graph)
        self.assertEqual(nodes["pmid:700"]["level"], 0)
        self.assertEqual(nodes["pmid:700"]["status"], "citing")
        self.assertEqual(nodes[ref.id]["level"], 2)
        self.assertEqual(nodes["pmid:800"]["level"], 3)
        self.assertEqual(
            _links(graph),
            {(a.id, ref.id), ("pmid:700", a.id), ("pmid:800", ref.id)},
        )
        self.assertEqual(graph["stats"]["available_citing"], 1)

    def test_related_level_is_capped_below_a_large_budget(self) -> None:
        ref = self.article(pmid="500", cited_by_pmids=[str(10000 + i) for i in range(650)])
        self.member(pmid="1", reference_pmids=["500"])

        graph = self.build(depth=3, max_extra_nodes=5000)
        counts = graph["stats"]["level_counts"]
        self.assertEqual(counts, {"level0": 0, "level1": 1, "level2": 1, "level3": 500})
        related = [n for n in graph["nodes"] if n["level"] == 3]
        self.assertEqual(related[0]["id"], "pmid:10000")
        self.assertNotIn("pmid:10500", {n["id"] for n in related})
        self.assertEqual(sum(1 for source, target in _links(graph) if target == ref.id and source.startswith("pmid:")), 500)

    def test_extra_node_budget_is_never_exceeded(self) -> None:
        for i in range(5):
            self.member(
                pmid=str(i),
                reference_pmids=[f"r{i}-{j}" for j in range(8)],
                reference_dois=[f"10.1/{i}-{j}" for j in range(4)],
                cited_by_pmids=[f"c{i}-{j}" for j in range(6)],
            )
        for budget in (10, 25, 60):
            graph = self.build(depth=3, max_extra_nodes=budget, max_links_per_node=5)
            stats = graph["stats"]
            self.assertLessEqual(stats["total_nodes"] - stats["level_counts"]["level1"], budget)
            self.assertEqual(graph["limits"], {"max_links_per_node": 5, "max_extra_nodes": budget})
            node_ids = set(_nodes_by_id(graph))
            for source, target in _links(graph):
                self.assertIn(source, node_ids)
                self.assertIn(target, node_ids)
                self.assertNotEqual(source, target)


def _run_build(py_hash_seed: str) -> dict:
    script = r"""
import json
import tempfile
from dataclasses import replace

from server.citelab.config import Settings
from server.citelab.core.db import get_sessionmaker, init_db
from server.citelab.core.models import Article, Project, ProjectArticle
from server.citelab.graph.builder import build_citation_graph
from server.citelab.graph.types import GraphParams

with tempfile.TemporaryDirectory() as tmp:
    settings = replace(Settings.from_env(), db_url=f"sqlite:///{tmp}/det.db")
    init_db(settings)
    db = get_sessionmaker(settings)()
    db.add(Project(id="p1", name="p"))
    for i in range(6):
        db.add(Article(
            id=f"a{i}",
            pmid=str(i),
            year=2000 + i,
            reference_pmids=[str(100 + (i * 7 + j) % 25) for j in range(9)],
            reference_dois=[f"10.1/d{(i + j) % 5}" for j in range(3)],
            cited_by_pmids=[str(300 + (i * 3 + j) % 11) for j in range(5)],
        ))
        db.add(ProjectArticle(id=f"pa{i}", project_id="p1", article_id=f"a{i}"))
    db.add(Article(id="x1", pmid="105", cited_by_count=40, cited_by_pmids=["900", "901"]))
    db.flush()
    graph = build_citation_graph(
        db, "p1", GraphParams(depth=3, max_extra_nodes=20, max_links_per_node=4, sort_by="frequency")
    )
    db.close()
print(json.dumps(graph, sort_keys=True))
""".strip()

    env = dict(os.environ)
    env["PYTHONHASHSEED"] = str(py_hash_seed)
    proc = subprocess.run(
        [sys.executable, "-c", script],
        cwd=str(_REPO_ROOT),
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return json.loads(proc.stdout.strip() or "{}")


class TestGraphDeterminism(unittest.TestCase):
    def test_graph_stable_across_hash_seed(self) -> None:
        out_a = _run_build("1")
        out_b = _run_build("2")
        self.assertTrue(out_a["nodes"])
        self.assertEqual(out_a, out_b)


if __name__ == "__main__":
    unittest.main()
