from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from server.citelab.core.db import Base


def _uuid() -> str:
    return uuid.uuid4().hex


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class ArticleStatus(str, Enum):
    candidate = "candidate"
    selected = "selected"
    excluded = "excluded"
    deleted = "deleted"


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    documents: Mapped[list["Document"]] = relationship(back_populates="project")


class Article(Base):
    __tablename__ = "articles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    pmid: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    doi: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    authors: Mapped[list[str]] = mapped_column(JSON, default=list)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    journal: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(32), default="pubmed")
    abstract: Mapped[str | None] = mapped_column(Text, nullable=True)

    reference_pmids: Mapped[list[str]] = mapped_column(JSON, default=list)
    reference_dois: Mapped[list[str]] = mapped_column(JSON, default=list)
    cited_by_pmids: Mapped[list[str]] = mapped_column(JSON, default=list)
    cited_by_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stats_quality: Mapped[int] = mapped_column(Integer, default=0)
    references_fetched_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)


class ProjectArticle(Base):
    __tablename__ = "project_articles"
    __table_args__ = (UniqueConstraint("project_id", "article_id", name="uq_project_article"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(String(32), ForeignKey("projects.id"), index=True)
    article_id: Mapped[str] = mapped_column(String(32), ForeignKey("articles.id"), index=True)
    status: Mapped[str] = mapped_column(String(16), default=ArticleStatus.candidate.value, index=True)
    source_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    article: Mapped["Article"] = relationship()


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(String(32), ForeignKey("projects.id"), index=True)
    title: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str] = mapped_column(Text, default="")
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    project: Mapped["Project"] = relationship(back_populates="documents")


class Citation(Base):
    __tablename__ = "citations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    document_id: Mapped[str] = mapped_column(String(32), ForeignKey("documents.id"), index=True)
    article_id: Mapped[str] = mapped_column(String(32), ForeignKey("articles.id"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    inline_number: Mapped[int] = mapped_column(Integer)
    sub_number: Mapped[int] = mapped_column(Integer, default=1)
    page_range: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)


class CacheEntry(Base):
    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    namespace: Mapped[str] = mapped_column(String(96), index=True)
    scope: Mapped[str] = mapped_column(String(96), index=True, default="global")

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime, index=True)

    value_json: Mapped[str | None] = mapped_column(Text, nullable=True)
