"""Record store helpers shared by the numbering and graph engines.

All functions work inside the caller's session; nothing here commits.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from server.citelab.core.errors import NotFoundError
from server.citelab.core.models import Article, Citation, Document, Project


def get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("project", project_id)
    return project


def get_document(db: Session, document_id: str) -> Document:
    document = db.get(Document, document_id)
    if document is None:
        raise NotFoundError("document", document_id)
    return document


def get_article(db: Session, article_id: str) -> Article:
    article = db.get(Article, article_id)
    if article is None:
        raise NotFoundError("article", article_id)
    return article


def get_citation(db: Session, citation_id: str, *, document_id: str | None = None) -> Citation:
    citation = db.get(Citation, citation_id)
    if citation is None or (document_id is not None and citation.document_id != document_id):
        raise NotFoundError("citation", citation_id)
    return citation


def list_documents(db: Session, project_id: str) -> list[Document]:
    return list(
        db.scalars(
            select(Document)
            .where(Document.project_id == project_id)
            .order_by(Document.order_index, Document.created_at, Document.id)
        )
    )


def list_citations(db: Session, document_id: str) -> list[Citation]:
    return list(
        db.scalars(
            select(Citation)
            .where(Citation.document_id == document_id)
            .order_by(Citation.order_index, Citation.created_at, Citation.id)
        )
    )


def list_citations_with_articles(db: Session, document_id: str) -> list[tuple[Citation, Article]]:
    rows = db.execute(
        select(Citation, Article)
        .join(Article, Article.id == Citation.article_id)
        .where(Citation.document_id == document_id)
        .order_by(Citation.order_index, Citation.created_at, Citation.id)
    )
    return [(citation, article) for citation, article in rows]


def insert_citation(
    db: Session,
    *,
    document_id: str,
    article_id: str,
    inline_number: int,
    sub_number: int,
    order_index: int,
    page_range: str | None = None,
    note: str | None = None,
) -> Citation:
    citation = Citation(
        document_id=document_id,
        article_id=article_id,
        inline_number=inline_number,
        sub_number=sub_number,
        order_index=order_index,
        page_range=page_range,
        note=note,
    )
    db.add(citation)
    db.flush()
    return citation


def update_citation_fields(citation: Citation, **fields: object) -> bool:
    """Assign changed fields only; returns whether anything changed."""
    changed = False
    for name, value in fields.items():
        if getattr(citation, name) != value:
            setattr(citation, name, value)
            changed = True
    return changed


def delete_citations(db: Session, citations: Iterable[Citation]) -> int:
    count = 0
    for citation in citations:
        db.delete(citation)
        count += 1
    if count:
        db.flush()
    return count


_IN_CHUNK = 500


def _chunks(values: Sequence[str]) -> Iterable[list[str]]:
    values = list(values)
    for start in range(0, len(values), _IN_CHUNK):
        yield values[start : start + _IN_CHUNK]


def find_articles_by_pmids(db: Session, pmids: Sequence[str], *, where: Sequence = ()) -> list[Article]:
    out: list[Article] = []
    for chunk in _chunks(pmids):
        stmt = select(Article).where(Article.pmid.in_(chunk), *where).order_by(Article.pmid, Article.id)
        out.extend(db.scalars(stmt))
    return out


def find_articles_by_dois(db: Session, dois: Sequence[str], *, where: Sequence = ()) -> list[Article]:
    """Match on lower-cased DOI."""
    out: list[Article] = []
    for chunk in _chunks([d.lower() for d in dois]):
        stmt = (
            select(Article)
            .where(func.lower(Article.doi).in_(chunk), *where)
            .order_by(Article.doi, Article.id)
        )
        out.extend(db.scalars(stmt))
    return out
