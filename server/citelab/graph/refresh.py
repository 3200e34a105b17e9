"""Reference refresh: pull linked PMIDs from PubMed eLink onto project articles.

The refresh runs in two steps. ``refresh_project_references`` stores the
links inside the caller's transaction. ``warm_linked_metadata`` fetches
details for the linked PMIDs into the metadata cache; the cache writes through
its own connections, so on SQLite it must run after that transaction has been
committed.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from server.citelab.core.models import Article, ArticleStatus, ProjectArticle
from server.citelab.core.store import get_project
from server.citelab.core.throttle import Throttle
from server.citelab.graph.metadata import GraphMetadataCache
from server.citelab.graph.stats import abstract_quality
from server.citelab.sources.pubmed import LINK_CITED_BY, LINK_REFERENCES, PubMedClient

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    project_id: str
    articles: int = 0
    updated: int = 0
    failed_batches: int = 0
    warmed: int = 0
    linked_pmids: list[str] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, int]:
        return {
            "articles": self.articles,
            "updated": self.updated,
            "failed_batches": self.failed_batches,
            "warmed": self.warmed,
        }


def _batches(items: list, size: int) -> list[list]:
    size = max(1, int(size))
    return [items[i : i + size] for i in range(0, len(items), size)]


def _project_articles_with_pmid(db: Session, project_id: str, *, stale_before: dt.datetime | None) -> list[Article]:
    stmt = (
        select(Article)
        .join(ProjectArticle, ProjectArticle.article_id == Article.id)
        .where(
            ProjectArticle.project_id == project_id,
            ProjectArticle.status != ArticleStatus.deleted.value,
            Article.pmid.is_not(None),
            Article.pmid != "",
        )
        .order_by(ProjectArticle.created_at, ProjectArticle.id)
    )
    if stale_before is not None:
        stmt = stmt.where(
            or_(Article.references_fetched_at.is_(None), Article.references_fetched_at < stale_before)
        )
    return list(db.scalars(stmt))


def refresh_project_references(
    db: Session,
    project_id: str,
    pubmed: PubMedClient,
    *,
    throttle: Throttle | None = None,
    batch_size: int = 50,
    stale_after_days: int | None = None,
) -> RefreshReport:
    """Pull reference and cited-by PMIDs for the project's articles from PubMed.

    Failed batches are logged and skipped; their articles keep the lists they
    had. The report lists every linked PMID in first-seen order for
    ``warm_linked_metadata``.
    """
    get_project(db, project_id)
    throttle = throttle or Throttle(0.0)
    stale_before = None
    if stale_after_days is not None:
        stale_before = dt.datetime.now(dt.UTC) - dt.timedelta(days=int(stale_after_days))
    articles = _project_articles_with_pmid(db, project_id, stale_before=stale_before)
    report = RefreshReport(project_id=project_id, articles=len(articles))

    linked: dict[str, None] = {}
    for batch in _batches(articles, batch_size):
        pmids = [a.pmid for a in batch if a.pmid]
        throttle.wait()
        references = pubmed.get_links(pmids, linkname=LINK_REFERENCES)
        throttle.wait()
        cited_by = pubmed.get_links(pmids, linkname=LINK_CITED_BY)
        if references is None or cited_by is None:
            logger.warning("eLink batch failed for project %s (%d PMIDs); keeping stored links.", project_id, len(pmids))
            report.failed_batches += 1
            continue
        now = dt.datetime.now(dt.UTC)
        for article in batch:
            refs = references.get(article.pmid or "", [])
            citing = cited_by.get(article.pmid or "", [])
            article.reference_pmids = list(refs)
            article.cited_by_pmids = list(citing)
            article.references_fetched_at = now
            report.updated += 1
            for pmid in [*refs, *citing]:
                linked.setdefault(pmid, None)
        db.flush()

    report.linked_pmids = list(linked)
    logger.info(
        "Refreshed references for project %s: %d/%d articles updated, %d failed batches, %d linked PMIDs.",
        project_id,
        report.updated,
        report.articles,
        report.failed_batches,
        len(report.linked_pmids),
    )
    return report


def warm_linked_metadata(
    report: RefreshReport,
    pubmed: PubMedClient,
    metadata_cache: GraphMetadataCache,
    *,
    throttle: Throttle | None = None,
    batch_size: int = 50,
    limit: int = 500,
) -> RefreshReport:
    """Cache details for the first ``limit`` linked PMIDs that are not cached yet.

    ``report.warmed`` counts entries that were actually written.
    """
    pmids = report.linked_pmids[: max(0, int(limit))]
    if not pmids:
        return report
    throttle = throttle or Throttle(0.0)
    cached = metadata_cache.get_many("pmid", pmids)
    missing = [p for p in pmids if p not in cached]
    dropped = 0
    for batch in _batches(missing, batch_size):
        throttle.wait()
        try:
            records = pubmed.fetch_by_pmids(batch)
        except Exception:
            logger.exception("Metadata warm-up batch failed (%d PMIDs).", len(batch))
            report.failed_batches += 1
            continue
        for record in records:
            pmid = record.get("pmid")
            if not pmid:
                continue
            meta = dict(record)
            meta["stats_quality"] = abstract_quality(record.get("abstract"))
            if metadata_cache.set("pmid", pmid, meta):
                report.warmed += 1
            else:
                dropped += 1
    if dropped:
        logger.warning("Metadata cache rejected %d of the warmed PMID records.", dropped)
    logger.info("Warmed %d linked PMIDs for project %s (%d already cached).", report.warmed, report.project_id, len(cached))
    return report
