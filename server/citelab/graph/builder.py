"""Citation graph construction for one project.

The graph grows outward from the project's own articles (level 1):

* level 2 - works the project articles reference,
* level 0 - works citing the project articles,
* level 3 - works citing the level-2 references.

Levels 2, 0 and 3 share one budget of ``max_extra_nodes`` and are filled
strictly in that order, so a tight budget is spent on references first.
Works that are not in the local store appear as placeholder nodes
(``pmid:<id>`` / ``doi:<doi>``) that enrichment may later fill in.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from server.citelab.citations.identity import base_doi
from server.citelab.core.models import Article, ArticleStatus, ProjectArticle
from server.citelab.core.store import find_articles_by_dois, find_articles_by_pmids, get_project
from server.citelab.graph.clusters import create_clusters
from server.citelab.graph.filters import ArticleFilter
from server.citelab.graph.metadata import GraphMetadataCache
from server.citelab.graph.types import GraphLink, GraphNode, GraphParams, node_label

if TYPE_CHECKING:
    from server.citelab.graph.enrich import GraphEnricher

logger = logging.getLogger(__name__)

DOI_SLOT_SHARE = 0.3
MAX_RANKING_LOOKUPS = 5000
MAX_LEVEL3_NODES = 500


def _unique(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        value = str(value or "").strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


def _ref_pmids(article: Article) -> list[str]:
    return _unique(article.reference_pmids or [])


def _ref_dois(article: Article) -> list[str]:
    return _unique(base_doi(d) for d in (article.reference_dois or []))


def _citing_pmids(article: Article) -> list[str]:
    return _unique(article.cited_by_pmids or [])


def _article_node(article: Article, *, level: int, status: str) -> GraphNode:
    authors = [str(a) for a in (article.authors or []) if str(a).strip()]
    return GraphNode(
        id=article.id,
        label=node_label(authors, article.year),
        level=level,
        status=status,
        pmid=article.pmid,
        doi=(article.doi or "").strip().lower() or None,
        title=article.title,
        authors=authors,
        journal=article.journal,
        year=article.year,
        cited_by_count=max(len(article.cited_by_pmids or []), article.cited_by_count or 0),
        stats_quality=article.stats_quality or 0,
        source=article.source,
    )


def _placeholder(kind: str, ident: str, *, level: int, status: str, meta: dict | None) -> GraphNode:
    if kind == "pmid":
        node = GraphNode(
            id=f"pmid:{ident}",
            label=f"PMID:{ident}",
            level=level,
            status=status,
            pmid=ident,
            source="pubmed",
            placeholder=True,
        )
    else:
        node = GraphNode(
            id=f"doi:{ident}",
            label=f"DOI:{ident[:20]}...",
            level=level,
            status=status,
            doi=ident,
            source="crossref",
            placeholder=True,
        )
    if meta:
        node.apply_metadata(meta)
    return node


@dataclass
class _GraphState:
    params: GraphParams
    nodes: dict[str, GraphNode] = field(default_factory=dict)
    pmid_to_id: dict[str, str] = field(default_factory=dict)
    doi_to_id: dict[str, str] = field(default_factory=dict)
    extra: int = 0

    def can_add_more(self) -> bool:
        return self.extra < self.params.max_extra_nodes

    def index(self, node_id: str, *, pmid: str | None, doi: str | None) -> None:
        if pmid:
            self.pmid_to_id.setdefault(pmid, node_id)
        if doi:
            self.doi_to_id.setdefault(base_doi(doi), node_id)

    def add(self, node: GraphNode, *, counts: bool = True) -> bool:
        if node.id in self.nodes:
            self.index(node.id, pmid=node.pmid, doi=node.doi)
            return False
        if counts and not self.can_add_more():
            return False
        self.nodes[node.id] = node
        if counts:
            self.extra += 1
        self.index(node.id, pmid=node.pmid, doi=node.doi)
        return True


@dataclass
class _Selection:
    pmids: list[str] = field(default_factory=list)
    dois: list[str] = field(default_factory=list)
    available_pmids: int = 0
    available_dois: int = 0


class _Ranker:
    """Orders candidate PMIDs by the requested strategy.

    Citation counts and years come from local articles first, then from the
    metadata cache.
    """

    def __init__(self, db: Session, sort_by: str, metadata: GraphMetadataCache | None) -> None:
        self.db = db
        self.sort_by = sort_by
        self.metadata = metadata
        self._info: dict[str, tuple[int, int | None]] = {}

    def _load(self, pmids: list[str]) -> None:
        wanted = [p for p in pmids if p not in self._info][:MAX_RANKING_LOOKUPS]
        if not wanted:
            return
        for article in find_articles_by_pmids(self.db, wanted):
            if article.pmid and article.pmid not in self._info:
                cited = max(len(article.cited_by_pmids or []), article.cited_by_count or 0)
                self._info[article.pmid] = (cited, article.year)
        if self.metadata is None:
            return
        cached = self.metadata.get_many("pmid", [p for p in wanted if p not in self._info])
        for pmid, meta in cached.items():
            cited = meta.get("cited_by_count")
            year = meta.get("year")
            self._info[pmid] = (
                cited if isinstance(cited, int) else 0,
                year if isinstance(year, int) else None,
            )

    def rank(self, pmids: list[str], frequency: Counter[str]) -> list[str]:
        if self.sort_by == "default" or not pmids:
            return list(pmids)
        if self.sort_by == "frequency":
            return sorted(pmids, key=lambda p: -frequency[p])
        self._load(pmids)
        if self.sort_by == "year":
            return sorted(pmids, key=lambda p: -(self._info.get(p, (0, None))[1] or 0))
        return sorted(pmids, key=lambda p: (-self._info.get(p, (0, None))[0], -frequency[p]))


def _select_by_link_cap(
    sources: list[Article],
    candidates_by_article: dict[str, list[str]],
    top: set[str],
    max_links: int,
) -> list[str]:
    selected: dict[str, None] = {}
    for article in sources:
        added = 0
        for ident in candidates_by_article.get(article.id, []):
            if added >= max_links:
                break
            if ident in top:
                selected.setdefault(ident, None)
                added += 1
    return list(selected)


def _select_references(
    level1: list[Article], state: _GraphState, ranker: _Ranker
) -> _Selection:
    params = state.params
    pmid_freq: Counter[str] = Counter()
    doi_freq: Counter[str] = Counter()
    pmids_by_article: dict[str, list[str]] = {}
    dois_by_article: dict[str, list[str]] = {}
    for article in level1:
        ext_pmids = [p for p in _ref_pmids(article) if p not in state.pmid_to_id]
        ext_dois = [d for d in _ref_dois(article) if d not in state.doi_to_id]
        pmids_by_article[article.id] = ext_pmids
        dois_by_article[article.id] = ext_dois
        pmid_freq.update(ext_pmids)
        doi_freq.update(ext_dois)

    unique_pmids = list(pmid_freq)
    unique_dois = list(doi_freq)
    doi_slots = min(math.floor(params.max_extra_nodes * DOI_SLOT_SHARE), len(unique_dois))
    pmid_slots = params.max_extra_nodes - doi_slots

    top_pmids = set(ranker.rank(unique_pmids, pmid_freq)[:pmid_slots])
    top_dois = set(sorted(unique_dois, key=lambda d: -doi_freq[d])[:doi_slots])

    return _Selection(
        pmids=_select_by_link_cap(level1, pmids_by_article, top_pmids, params.max_links_per_node),
        dois=_select_by_link_cap(level1, dois_by_article, top_dois, params.max_links_per_node),
        available_pmids=len(unique_pmids),
        available_dois=len(unique_dois),
    )


def _select_citing(
    level1: list[Article], state: _GraphState, ranker: _Ranker, *, reserved: int
) -> _Selection:
    params = state.params
    freq: Counter[str] = Counter()
    by_article: dict[str, list[str]] = {}
    for article in level1:
        ext = [p for p in _citing_pmids(article) if p not in state.pmid_to_id]
        by_article[article.id] = ext
        freq.update(ext)
    unique = list(freq)
    slots = max(0, params.max_extra_nodes - reserved)
    top = set(ranker.rank(unique, freq)[:slots])
    return _Selection(
        pmids=_select_by_link_cap(level1, by_article, top, params.max_links_per_node),
        available_pmids=len(unique),
    )


def _add_pmid_level(
    db: Session,
    state: _GraphState,
    pmids: list[str],
    *,
    level: int,
    status: str,
    where: list,
    metadata: GraphMetadataCache | None,
) -> list[Article]:
    """Insert local articles first, then placeholders, until the budget runs out."""
    if not pmids or not state.can_add_more():
        return []
    local: dict[str, Article] = {}
    for article in find_articles_by_pmids(db, pmids, where=where):
        if article.pmid:
            local.setdefault(article.pmid, article)

    raw: list[Article] = []
    for pmid in pmids:
        if not state.can_add_more():
            break
        article = local.get(pmid)
        if article is None:
            continue
        if state.add(_article_node(article, level=level, status=status)):
            raw.append(article)

    if not state.params.has_external_filters:
        for pmid in pmids:
            if not state.can_add_more():
                break
            if pmid in local or pmid in state.pmid_to_id:
                continue
            meta = metadata.get("pmid", pmid) if metadata else None
            state.add(_placeholder("pmid", pmid, level=level, status=status, meta=meta))
    return raw


def _add_doi_level(
    db: Session,
    state: _GraphState,
    dois: list[str],
    *,
    level: int,
    status: str,
    where: list,
    metadata: GraphMetadataCache | None,
) -> list[Article]:
    if not dois or not state.can_add_more():
        return []
    local: dict[str, Article] = {}
    for article in find_articles_by_dois(db, dois, where=where):
        key = base_doi(article.doi)
        if key:
            local.setdefault(key, article)

    raw: list[Article] = []
    for doi in dois:
        if not state.can_add_more():
            break
        article = local.get(doi)
        if article is None:
            continue
        if state.add(_article_node(article, level=level, status=status)):
            raw.append(article)
        else:
            state.doi_to_id.setdefault(doi, article.id)

    if not state.params.has_external_filters:
        for doi in dois:
            if not state.can_add_more():
                break
            if doi in local or doi in state.doi_to_id:
                continue
            meta = metadata.get("doi", doi) if metadata else None
            state.add(_placeholder("doi", doi, level=level, status=status, meta=meta))
    return raw


def _build_links(state: _GraphState, articles: Iterable[Article]) -> list[GraphLink]:
    links: dict[tuple[str, str], GraphLink] = {}

    def _link(source: str | None, target: str | None) -> None:
        if not source or not target or source == target:
            return
        if source not in state.nodes or target not in state.nodes:
            return
        links.setdefault((source, target), GraphLink(source=source, target=target))

    for article in articles:
        if article.id not in state.nodes:
            continue
        for pmid in _ref_pmids(article):
            _link(article.id, state.pmid_to_id.get(pmid))
        for doi in _ref_dois(article):
            _link(article.id, state.doi_to_id.get(doi))
        for pmid in _citing_pmids(article):
            _link(state.pmid_to_id.get(pmid), article.id)
    return list(links.values())


def _project_facets(db: Session, project_id: str) -> tuple[list[str], dict[str, int | None]]:
    active = [
        ProjectArticle.project_id == project_id,
        ProjectArticle.status != ArticleStatus.deleted.value,
    ]
    queries = db.scalars(
        select(distinct(ProjectArticle.source_query))
        .where(*active, ProjectArticle.source_query.is_not(None), ProjectArticle.source_query != "")
        .order_by(ProjectArticle.source_query)
    )
    year_min, year_max = db.execute(
        select(func.min(Article.year), func.max(Article.year))
        .join(ProjectArticle, ProjectArticle.article_id == Article.id)
        .where(*active)
    ).one()
    return list(queries), {"min": year_min, "max": year_max}


def build_citation_graph(
    db: Session,
    project_id: str,
    params: GraphParams,
    *,
    metadata_cache: GraphMetadataCache | None = None,
    enricher: "GraphEnricher | None" = None,
) -> dict:
    get_project(db, project_id)
    params = params.normalized()
    filt = ArticleFilter(params)
    external = filt.external_clauses()
    state = _GraphState(params=params)
    ranker = _Ranker(db, params.sort_by, metadata_cache)

    level1_rows = db.execute(
        select(Article, ProjectArticle.status)
        .join(ProjectArticle, ProjectArticle.article_id == Article.id)
        .where(*filt.project_clauses(project_id))
        .order_by(ProjectArticle.created_at, ProjectArticle.id)
    ).all()
    level1: list[Article] = []
    for article, status in level1_rows:
        if state.add(_article_node(article, level=1, status=status), counts=False):
            level1.append(article)

    raw_level2: list[Article] = []
    raw_level0: list[Article] = []
    raw_level3: list[Article] = []
    refs = _Selection()
    citing = _Selection()

    if params.depth >= 2:
        refs = _select_references(level1, state, ranker)
    if params.depth >= 3:
        citing = _select_citing(level1, state, ranker, reserved=len(refs.pmids))

    if params.depth >= 2:
        raw_level2 = _add_pmid_level(
            db, state, refs.pmids, level=2, status="reference", where=external, metadata=metadata_cache
        )
        raw_level2 += _add_doi_level(
            db, state, refs.dois, level=2, status="reference", where=external, metadata=metadata_cache
        )

    if params.depth >= 3:
        raw_level0 = _add_pmid_level(
            db, state, citing.pmids, level=0, status="citing", where=external, metadata=metadata_cache
        )
        if raw_level2 and state.can_add_more():
            level0_pmids = set(citing.pmids)
            related = [
                pmid
                for pmid in _unique(p for article in raw_level2 for p in _citing_pmids(article))
                if pmid not in state.pmid_to_id and pmid not in level0_pmids
            ]
            remaining = params.max_extra_nodes - state.extra
            related = related[: min(MAX_LEVEL3_NODES, remaining)]
            raw_level3 = _add_pmid_level(
                db, state, related, level=3, status="related", where=external, metadata=metadata_cache
            )

    links = _build_links(state, [*level1, *raw_level0, *raw_level2, *raw_level3])

    if enricher is not None:
        enricher.enrich(list(state.nodes.values()))

    nodes = list(state.nodes.values())
    level_counts = Counter(node.level for node in nodes)
    clusters = []
    if params.enable_clustering:
        clusters = create_clusters([n for n in nodes if n.level in (2, 3)], params.cluster_by)

    level1_ids = {article.id for article in level1}
    internal_refs = sum(
        1 for article in level1 for pmid in _ref_pmids(article) if state.pmid_to_id.get(pmid) in level1_ids
    )
    source_queries, year_range = _project_facets(db, project_id)

    logger.info(
        "Built citation graph for project %s: depth=%d nodes=%d links=%d extra=%d/%d.",
        project_id,
        params.depth,
        len(nodes),
        len(links),
        state.extra,
        params.max_extra_nodes,
    )

    return {
        "nodes": [node.to_dict() for node in nodes],
        "links": [link.to_dict() for link in links],
        "stats": {
            "total_nodes": len(nodes),
            "total_links": len(links),
            "level_counts": {f"level{level}": level_counts.get(level, 0) for level in range(4)},
            "available_references": refs.available_pmids + refs.available_dois,
            "available_citing": citing.available_pmids,
            "articles_with_refs": sum(1 for a in level1 if _ref_pmids(a) or _ref_dois(a)),
            "matched_internal_refs": internal_refs,
        },
        "available_source_queries": source_queries,
        "year_range": year_range,
        "current_depth": params.depth,
        "limits": {
            "max_links_per_node": params.max_links_per_node,
            "max_extra_nodes": params.max_extra_nodes,
        },
        "sort_by": params.sort_by,
        "clusters": [cluster.to_dict() for cluster in clusters],
        "clustering_enabled": params.enable_clustering,
    }
