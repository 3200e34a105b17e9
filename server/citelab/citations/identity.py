from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_DOI_VERSION_RE = re.compile(r"/v\d+/.*$")
_TITLE_STRIP_RE = re.compile(r"[^\w\s]")
_DOI_CORE_RE = re.compile(r"(10\.\d{4,9}/[-._;()/:A-Z0-9]+)", re.IGNORECASE)


def _field(article: Any, name: str) -> Any:
    if isinstance(article, Mapping):
        return article.get(name)
    return getattr(article, name, None)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def base_doi(doi: str | None) -> str:
    """Lower-case a DOI and drop a trailing ``/v<n>/...`` version suffix."""
    doi = _text(doi)
    if not doi:
        return ""
    return _DOI_VERSION_RE.sub("", doi).lower()


def extract_doi(raw: str | None) -> str | None:
    """Pull a bare DOI out of free text or a doi.org URL."""
    raw = _text(raw)
    if not raw:
        return None
    m = _DOI_CORE_RE.search(raw)
    if not m:
        return None
    return m.group(1).rstrip(").,;]").lower()


def normalize_title(title: str | None) -> str:
    return _TITLE_STRIP_RE.sub("", _text(title).lower()).strip()


def dedupe_key(article: Any) -> str:
    """Canonical identity used to merge citations of the same work.

    Precedence is PMID, then version-less DOI, then punctuation-free title,
    falling back to the internal id so that unidentifiable records never merge.
    """
    pmid = _text(_field(article, "pmid"))
    if pmid:
        return f"pmid:{pmid}"
    doi = base_doi(_field(article, "doi"))
    if doi:
        return f"doi:{doi}"
    title = normalize_title(_field(article, "title"))
    if title:
        return f"title:{title}"
    return f"id:{_text(_field(article, 'id'))}"
