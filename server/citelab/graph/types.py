from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

FILTERS = ("all", "selected", "excluded")
SORT_STRATEGIES = ("citations", "frequency", "year", "default")
CLUSTER_METHODS = ("year", "journal", "auto")
SOURCES = ("pubmed", "doaj", "wiley")

DEFAULT_LINKS_PER_NODE = 20
MAX_LINKS_PER_NODE = 100
DEFAULT_EXTRA_NODES = 2000
MIN_EXTRA_NODES = 10
MAX_EXTRA_NODES = 5000
MAX_DEPTH = 3


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def _as_int(value: Any, default: int | None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return tuple(sorted({str(v).strip() for v in items if str(v).strip()}))


@dataclass(frozen=True)
class GraphParams:
    """Normalized request for a citation graph.

    Construct through ``from_query`` or call ``normalized()``: limits are
    clamped and unknown choices fall back to their defaults, so two requests
    that mean the same graph produce the same ``cache_parts()``.
    """

    filter: str = "all"
    year_from: int | None = None
    year_to: int | None = None
    stats_quality: int = 0
    max_links_per_node: int = DEFAULT_LINKS_PER_NODE
    max_extra_nodes: int = DEFAULT_EXTRA_NODES
    sort_by: str = "citations"
    depth: int = 1
    source_queries: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    enable_clustering: bool = False
    cluster_by: str = "auto"

    def normalized(self, *, max_links_cap: int = MAX_LINKS_PER_NODE, max_extra_cap: int = MAX_EXTRA_NODES) -> "GraphParams":
        year_from, year_to = self.year_from, self.year_to
        if year_from is not None and year_to is not None and year_from > year_to:
            year_from, year_to = year_to, year_from
        return replace(
            self,
            filter=self.filter if self.filter in FILTERS else "all",
            year_from=year_from,
            year_to=year_to,
            stats_quality=_clamp(self.stats_quality or 0, 0, 3),
            max_links_per_node=_clamp(self.max_links_per_node, 1, max(1, min(max_links_cap, MAX_LINKS_PER_NODE))),
            max_extra_nodes=_clamp(
                self.max_extra_nodes,
                MIN_EXTRA_NODES,
                max(MIN_EXTRA_NODES, min(max_extra_cap, MAX_EXTRA_NODES)),
            ),
            sort_by=self.sort_by if self.sort_by in SORT_STRATEGIES else "citations",
            depth=_clamp(self.depth, 1, MAX_DEPTH),
            source_queries=_as_list(self.source_queries),
            sources=tuple(s for s in _as_list(self.sources) if s in SOURCES),
            cluster_by=self.cluster_by if self.cluster_by in CLUSTER_METHODS else "auto",
        )

    @classmethod
    def from_query(cls, query: Mapping[str, Any]) -> "GraphParams":
        params = cls(
            filter=str(query.get("filter") or "all"),
            year_from=_as_int(query.get("year_from"), None),
            year_to=_as_int(query.get("year_to"), None),
            stats_quality=_as_int(query.get("stats_quality"), 0) or 0,
            max_links_per_node=_as_int(query.get("max_links_per_node"), DEFAULT_LINKS_PER_NODE),
            max_extra_nodes=_as_int(query.get("max_extra_nodes"), DEFAULT_EXTRA_NODES),
            sort_by=str(query.get("sort_by") or "citations"),
            depth=_as_int(query.get("depth"), 1),
            source_queries=_as_list(query.get("source_queries")),
            sources=_as_list(query.get("sources")),
            enable_clustering=_as_bool(query.get("enable_clustering")),
            cluster_by=str(query.get("cluster_by") or "auto"),
        )
        return params.normalized()

    @property
    def has_external_filters(self) -> bool:
        return self.year_from is not None or self.year_to is not None or self.stats_quality > 0

    def cache_parts(self) -> list[str]:
        parts: list[str] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                value = ",".join(value)
            parts.append(f"{f.name}={value}")
        return parts


@dataclass
class GraphNode:
    id: str
    label: str
    level: int
    status: str
    pmid: str | None = None
    doi: str | None = None
    title: str | None = None
    authors: list[str] = field(default_factory=list)
    journal: str | None = None
    year: int | None = None
    cited_by_count: int = 0
    stats_quality: int = 0
    source: str | None = None
    placeholder: bool = False

    @property
    def needs_enrichment(self) -> bool:
        return self.placeholder and not (self.title or self.authors or self.year)

    def apply_metadata(self, meta: Mapping[str, Any]) -> None:
        title = meta.get("title")
        if isinstance(title, str) and title.strip():
            self.title = title.strip()
        authors = meta.get("authors")
        if isinstance(authors, list) and authors:
            self.authors = [str(a) for a in authors if str(a).strip()]
        journal = meta.get("journal")
        if isinstance(journal, str) and journal.strip():
            self.journal = journal.strip()
        year = meta.get("year")
        if isinstance(year, int):
            self.year = year
        doi = meta.get("doi")
        if isinstance(doi, str) and doi.strip() and not self.doi:
            self.doi = doi.strip().lower()
        cited = meta.get("cited_by_count")
        if isinstance(cited, int) and cited > self.cited_by_count:
            self.cited_by_count = cited
        quality = meta.get("stats_quality")
        if isinstance(quality, int) and quality > self.stats_quality:
            self.stats_quality = quality
        self.label = node_label(self.authors, self.year, fallback=self.label)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "level": self.level,
            "status": self.status,
            "pmid": self.pmid,
            "doi": self.doi,
            "title": self.title,
            "authors": list(self.authors),
            "journal": self.journal,
            "year": self.year,
            "cited_by_count": self.cited_by_count,
            "stats_quality": self.stats_quality,
            "source": self.source,
            "placeholder": self.placeholder,
        }


@dataclass(frozen=True)
class GraphLink:
    source: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "target": self.target}


@dataclass
class ClusterInfo:
    id: str
    label: str
    cluster_type: str
    members: list[str]
    representative: str | None
    avg_year: int | None
    avg_citations: int

    @property
    def node_count(self) -> int:
        return len(self.members)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "cluster_type": self.cluster_type,
            "node_count": self.node_count,
            "members": list(self.members),
            "representative": self.representative,
            "avg_year": self.avg_year,
            "avg_citations": self.avg_citations,
        }


def node_label(authors: list[str] | None, year: int | None, *, fallback: str | None = None) -> str:
    """``"Smith (2020)"`` from the first author's leading token."""
    first = ""
    if authors:
        first = str(authors[0]).strip().split(" ")[0].strip(",;") if str(authors[0]).strip() else ""
    if not first:
        if fallback:
            return fallback
        first = "Unknown"
    return f"{first} ({year if year else '?'})"
