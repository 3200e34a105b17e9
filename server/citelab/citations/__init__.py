from __future__ import annotations

from server.citelab.citations.identity import base_doi, dedupe_key, extract_doi, normalize_title
from server.citelab.citations.locks import document_lock
from server.citelab.citations.markers import (
    MarkerChange,
    MarkerRewrite,
    extract_citation_ids,
    render_citation_marker,
    rewrite_citation_markers,
)
from server.citelab.citations.numbering import (
    SyncResult,
    add_citation,
    remove_citation,
    synchronize_citations,
    synchronize_from_content,
    update_citation,
)
from server.citelab.citations.renumber import RenumberResult, renumber_project, reorder_documents

__all__ = [
    "MarkerChange",
    "MarkerRewrite",
    "RenumberResult",
    "SyncResult",
    "add_citation",
    "base_doi",
    "dedupe_key",
    "document_lock",
    "extract_citation_ids",
    "extract_doi",
    "normalize_title",
    "remove_citation",
    "render_citation_marker",
    "renumber_project",
    "reorder_documents",
    "rewrite_citation_markers",
    "synchronize_citations",
    "synchronize_from_content",
    "update_citation",
]
