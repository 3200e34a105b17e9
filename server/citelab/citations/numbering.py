"""Inline citation numbering for a single document.

Citations of the same work (same dedupe key) share one inline number and are
told apart by a sub number, rendered e.g. as ``[3]``, ``[3.2]``. Every mutation
leaves inline numbers gap-free and assigns the smallest free number to a new
work. The caller owns the transaction: nothing here commits, and a
``NumberingInvariantError`` aborts the mutation before it can be committed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from server.citelab.citations.identity import dedupe_key
from server.citelab.citations.markers import extract_citation_ids
from server.citelab.core.errors import NumberingInvariantError
from server.citelab.core.models import Article, Citation
from server.citelab.core.store import (
    delete_citations,
    get_article,
    get_citation,
    get_document,
    insert_citation,
    list_citations_with_articles,
    update_citation_fields,
)

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass(frozen=True)
class SyncResult:
    deleted: int
    changed: int


def _smallest_free(used: Iterable[int]) -> int:
    taken = set(used)
    n = 1
    while n in taken:
        n += 1
    return n


def check_numbering(rows: list[tuple[Citation, Article]]) -> None:
    """Raise if two dedupe groups share an inline number or a slot repeats."""
    keys_by_number: dict[int, set[str]] = defaultdict(set)
    slots: set[tuple[int, int]] = set()
    for citation, article in rows:
        if citation.inline_number < 1 or citation.sub_number < 1:
            raise NumberingInvariantError(
                f"citation {citation.id} has non-positive number "
                f"{citation.inline_number}.{citation.sub_number}"
            )
        slot = (citation.inline_number, citation.sub_number)
        if slot in slots:
            raise NumberingInvariantError(
                f"number {citation.inline_number}.{citation.sub_number} is used twice "
                f"in document {citation.document_id}"
            )
        slots.add(slot)
        keys_by_number[citation.inline_number].add(dedupe_key(article))
    for number, keys in keys_by_number.items():
        if len(keys) > 1:
            raise NumberingInvariantError(
                f"inline number {number} is shared by {len(keys)} different works: {sorted(keys)}"
            )


def _verify(db: Session, document_id: str) -> None:
    db.flush()
    check_numbering(list_citations_with_articles(db, document_id))


def add_citation(
    db: Session,
    document_id: str,
    article_id: str,
    *,
    page_range: str | None = None,
    note: str | None = None,
) -> Citation:
    get_document(db, document_id)
    article = get_article(db, article_id)
    rows = list_citations_with_articles(db, document_id)

    group = [c for c, _ in rows if c.article_id == article.id]
    if not group:
        key = dedupe_key(article)
        group = [c for c, a in rows if dedupe_key(a) == key]

    if group:
        inline_number = group[0].inline_number
        sub_number = _smallest_free(c.sub_number for c, _ in rows if c.inline_number == inline_number)
    else:
        inline_number = _smallest_free(c.inline_number for c, _ in rows)
        sub_number = 1

    order_index = max((c.order_index for c, _ in rows), default=-1) + 1
    citation = insert_citation(
        db,
        document_id=document_id,
        article_id=article.id,
        inline_number=inline_number,
        sub_number=sub_number,
        order_index=order_index,
        page_range=page_range,
        note=note,
    )
    _verify(db, document_id)
    logger.debug(
        "Added citation %s to document %s as [%s.%s].",
        citation.id,
        document_id,
        inline_number,
        sub_number,
    )
    return citation


def update_citation(
    db: Session,
    citation_id: str,
    *,
    document_id: str | None = None,
    page_range: object = _UNSET,
    note: object = _UNSET,
) -> Citation:
    """Edit the free-text fields of a citation; numbering is left alone."""
    fields: dict[str, object] = {}
    if page_range is not _UNSET:
        fields["page_range"] = page_range
    if note is not _UNSET:
        fields["note"] = note
    if not fields:
        raise ValueError("No citation fields to update.")
    citation = get_citation(db, citation_id, document_id=document_id)
    if update_citation_fields(citation, **fields):
        db.flush()
    return citation


def remove_citation(db: Session, citation_id: str, *, document_id: str | None = None) -> None:
    citation = get_citation(db, citation_id, document_id=document_id)
    document_id = citation.document_id
    removed_number = citation.inline_number

    rows = list_citations_with_articles(db, document_id)
    delete_citations(db, [citation])
    remaining = [c for c, _ in rows if c.id != citation.id]

    same_number = [c for c in remaining if c.inline_number == removed_number]
    if same_number:
        for sub_number, other in enumerate(same_number, start=1):
            update_citation_fields(other, sub_number=sub_number)
    else:
        for other in remaining:
            if other.inline_number > removed_number:
                update_citation_fields(other, inline_number=other.inline_number - 1)

    for position, other in enumerate(remaining):
        update_citation_fields(other, order_index=position)

    _verify(db, document_id)
    logger.debug("Removed citation %s from document %s.", citation_id, document_id)


def synchronize_citations(db: Session, document_id: str, citation_ids: Iterable[str]) -> SyncResult:
    """Make stored citations match the markers still present in the document.

    Citations not in ``citation_ids`` are deleted, then every survivor is
    renumbered from scratch by first appearance, merging distinct article rows
    that share a dedupe key.
    """
    get_document(db, document_id)
    keep = {str(cid) for cid in citation_ids}
    rows = list_citations_with_articles(db, document_id)

    deleted = delete_citations(db, [c for c, _ in rows if c.id not in keep])
    remaining = [(c, a) for c, a in rows if c.id in keep]

    numbers: dict[str, int] = {}
    subs: dict[str, int] = {}
    changed = 0
    for position, (citation, article) in enumerate(remaining):
        key = dedupe_key(article)
        if key not in numbers:
            numbers[key] = len(numbers) + 1
            subs[key] = 0
        subs[key] += 1
        if update_citation_fields(
            citation,
            inline_number=numbers[key],
            sub_number=subs[key],
            order_index=position,
        ):
            changed += 1

    _verify(db, document_id)
    if deleted or changed:
        logger.info(
            "Synchronized document %s: %d citation(s) deleted, %d renumbered.",
            document_id,
            deleted,
            changed,
        )
    return SyncResult(deleted=deleted, changed=changed)


def synchronize_from_content(db: Session, document_id: str) -> SyncResult:
    document = get_document(db, document_id)
    return synchronize_citations(db, document_id, extract_citation_ids(document.content or ""))
