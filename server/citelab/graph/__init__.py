from __future__ import annotations

from server.citelab.graph.builder import build_citation_graph
from server.citelab.graph.clusters import create_clusters
from server.citelab.graph.enrich import EnrichmentReport, GraphEnricher
from server.citelab.graph.metadata import GraphMetadataCache
from server.citelab.graph.refresh import RefreshReport, refresh_project_references, warm_linked_metadata
from server.citelab.graph.service import GraphService
from server.citelab.graph.types import ClusterInfo, GraphLink, GraphNode, GraphParams

__all__ = [
    "ClusterInfo",
    "EnrichmentReport",
    "GraphEnricher",
    "GraphLink",
    "GraphMetadataCache",
    "GraphNode",
    "GraphParams",
    "GraphService",
    "RefreshReport",
    "build_citation_graph",
    "create_clusters",
    "refresh_project_references",
    "warm_linked_metadata",
]
