from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import ColumnElement, or_

from server.citelab.core.models import Article, ArticleStatus, ProjectArticle
from server.citelab.graph.types import GraphParams


@dataclass(frozen=True)
class ArticleFilter:
    """Predicates shared by every level of the graph.

    ``project_clauses`` narrows the project's own articles (level 1);
    ``external_clauses`` narrows articles found through references or
    citations (levels 0, 2, 3), which carry no project status.
    """

    params: GraphParams

    def _year_clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if self.params.year_from is not None:
            clauses.append(Article.year >= self.params.year_from)
        if self.params.year_to is not None:
            clauses.append(Article.year <= self.params.year_to)
        return clauses

    def external_clauses(self) -> list[ColumnElement[bool]]:
        clauses = self._year_clauses()
        if self.params.stats_quality > 0:
            clauses.append(Article.stats_quality >= self.params.stats_quality)
        return clauses

    def project_clauses(self, project_id: str) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [ProjectArticle.project_id == project_id]
        status = self.params.filter
        if status == "selected":
            clauses.append(ProjectArticle.status == ArticleStatus.selected.value)
        elif status == "excluded":
            clauses.append(ProjectArticle.status == ArticleStatus.excluded.value)
        else:
            clauses.append(ProjectArticle.status != ArticleStatus.deleted.value)
        if self.params.source_queries:
            clauses.append(ProjectArticle.source_query.in_(list(self.params.source_queries)))
        if self.params.sources:
            sources = list(self.params.sources)
            if "pubmed" in sources:
                clauses.append(or_(Article.source.in_(sources), Article.source.is_(None)))
            else:
                clauses.append(Article.source.in_(sources))
        clauses.extend(self.external_clauses())
        return clauses
