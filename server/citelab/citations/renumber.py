from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from server.citelab.citations.markers import MarkerChange, rewrite_citation_markers
from server.citelab.core.errors import NotFoundError
from server.citelab.core.store import get_project, list_citations, list_documents, update_citation_fields

logger = logging.getLogger(__name__)


@dataclass
class RenumberResult:
    renumbered: int = 0
    documents_updated: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "renumbered": self.renumbered,
            "documents_updated": list(self.documents_updated),
            "warnings": list(self.warnings),
        }


def reorder_documents(db: Session, project_id: str, document_ids: list[str]) -> int:
    """Set each document's order to its position in ``document_ids``.

    Every id must belong to the project; nothing changes otherwise.
    """
    get_project(db, project_id)
    documents = {d.id: d for d in list_documents(db, project_id)}
    for document_id in document_ids:
        if document_id not in documents:
            raise NotFoundError("document", document_id)

    changed = 0
    for position, document_id in enumerate(document_ids):
        document = documents[document_id]
        if document.order_index != position:
            document.order_index = position
            changed += 1
    db.flush()
    return changed


def renumber_project(db: Session, project_id: str) -> RenumberResult:
    """Give every cited article one number across the whole project.

    Documents are walked in order and each article keeps the number of its
    first appearance, so a work cited again in a later chapter reuses it.
    Markers in document content are rewritten to match; a marker that cannot
    be found is reported as a warning while the stored number still changes.
    """
    get_project(db, project_id)
    result = RenumberResult()
    global_numbers: dict[str, int] = {}

    for document in list_documents(db, project_id):
        citations = sorted(
            list_citations(db, document.id),
            key=lambda c: (c.inline_number, c.sub_number, c.order_index),
        )
        changes: list[MarkerChange] = []
        for citation in citations:
            number = global_numbers.get(citation.article_id)
            if number is None:
                number = len(global_numbers) + 1
                global_numbers[citation.article_id] = number
            old = citation.inline_number
            if old != number:
                changes.append(MarkerChange(citation_id=citation.id, old_number=old, new_number=number))
                update_citation_fields(citation, inline_number=number)
                result.renumbered += 1

        if not changes:
            continue

        rewrite = rewrite_citation_markers(document.content or "", changes)
        for citation_id in rewrite.missing:
            message = f"Marker for citation {citation_id} not found in document {document.id}."
            logger.warning(message)
            result.warnings.append(message)
        if rewrite.content != (document.content or ""):
            document.content = rewrite.content
        result.documents_updated.append(document.id)

    db.flush()
    logger.info(
        "Renumbered project %s: %d citation(s) across %d document(s).",
        project_id,
        result.renumbered,
        len(result.documents_updated),
    )
    return result
