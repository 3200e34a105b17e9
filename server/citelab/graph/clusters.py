from __future__ import annotations

from collections.abc import Callable

from server.citelab.graph.types import ClusterInfo, GraphNode

MIN_CANDIDATES = 50
MIN_CLUSTER_SIZE = 10
MIN_YEAR_CLUSTERS = 5
YEAR_BUCKET = 5


def _year_period(node: GraphNode) -> str:
    if not node.year:
        return "Unknown"
    start = (node.year // YEAR_BUCKET) * YEAR_BUCKET
    return f"{start}-{start + YEAR_BUCKET - 1}"


def _journal_key(node: GraphNode) -> str | None:
    journal = (node.journal or "").strip()
    return journal or None


def _summarize(cluster_id: str, label: str, cluster_type: str, members: list[GraphNode]) -> ClusterInfo:
    representative = max(members, key=lambda n: n.cited_by_count) if members else None
    years = [n.year for n in members if n.year]
    return ClusterInfo(
        id=cluster_id,
        label=label,
        cluster_type=cluster_type,
        members=[n.id for n in members],
        representative=representative.id if representative else None,
        avg_year=round(sum(years) / len(years)) if years else None,
        avg_citations=round(sum(n.cited_by_count for n in members) / len(members)) if members else 0,
    )


def _group(nodes: list[GraphNode], key: Callable[[GraphNode], str | None]) -> dict[str, list[GraphNode]]:
    groups: dict[str, list[GraphNode]] = {}
    for node in nodes:
        k = key(node)
        if k is None:
            continue
        groups.setdefault(k, []).append(node)
    return groups


def _by_year(nodes: list[GraphNode]) -> list[ClusterInfo]:
    out: list[ClusterInfo] = []
    for period, members in _group(nodes, _year_period).items():
        if len(members) < MIN_CLUSTER_SIZE:
            continue
        out.append(_summarize(f"cluster:year:{period}", f"{period} ({len(members)} articles)", "year", members))
    return out


def _by_journal(nodes: list[GraphNode]) -> list[ClusterInfo]:
    out: list[ClusterInfo] = []
    for journal, members in _group(nodes, _journal_key).items():
        if len(members) < MIN_CLUSTER_SIZE:
            continue
        short = journal if len(journal) <= 25 else journal[:25] + "..."
        out.append(_summarize(f"cluster:journal:{journal[:30]}", f"{short} ({len(members)})", "journal", members))
    return out


def create_clusters(nodes: list[GraphNode], method: str = "auto") -> list[ClusterInfo]:
    """Summarize large sets of peripheral nodes into year or venue groups.

    Purely descriptive: nodes are never removed. ``auto`` groups by
    publication period and adds venue groups when the periods alone give
    fewer than five clusters.
    """
    if len(nodes) < MIN_CANDIDATES:
        return []
    clusters: list[ClusterInfo] = []
    if method in ("year", "auto"):
        clusters.extend(_by_year(nodes))
    if method == "journal" or (method == "auto" and len(clusters) < MIN_YEAR_CLUSTERS):
        clusters.extend(_by_journal(nodes))
    clusters.sort(key=lambda c: -c.node_count)
    return clusters
