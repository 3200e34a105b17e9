from __future__ import annotations

import html
import logging
import re
import threading
from dataclasses import dataclass, field
from urllib.parse import quote

import requests

from server.citelab.citations.identity import extract_doi
from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.sources.http import backoff_sleep, record_http_request

logger = logging.getLogger(__name__)

_WORKS_URL = "https://api.crossref.org/works"
_TAG_RE = re.compile(r"<[^>]+>")
_MAX_AUTHORS = 5


def _first(value: object) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str):
        cleaned = " ".join(value.split())
        return cleaned or None
    return None


def _issued_year(message: dict) -> int | None:
    for key in ("issued", "published-print", "published-online", "published"):
        parts = (message.get(key) or {}).get("date-parts")
        if isinstance(parts, list) and parts and isinstance(parts[0], list) and parts[0]:
            try:
                return int(parts[0][0])
            except (TypeError, ValueError):
                continue
    return None


def _author_names(message: dict) -> list[str]:
    authors = message.get("author")
    if not isinstance(authors, list):
        return []
    names: list[str] = []
    for author in authors:
        if not isinstance(author, dict):
            continue
        name = " ".join(
            part.strip()
            for part in (author.get("family"), author.get("given"))
            if isinstance(part, str) and part.strip()
        )
        if not name and isinstance(author.get("name"), str):
            name = author["name"].strip()
        if name:
            names.append(name)
    if len(names) > _MAX_AUTHORS:
        return names[:_MAX_AUTHORS] + ["et al."]
    return names


def strip_jats(text: str | None) -> str | None:
    """Crossref abstracts arrive as JATS XML fragments; keep the text."""
    if not text:
        return None
    cleaned = " ".join(html.unescape(_TAG_RE.sub(" ", text)).split())
    return cleaned or None


def summarize_work(message: dict) -> dict:
    """Reduce a Crossref ``message`` to the article fields the graph uses."""
    cited = message.get("is-referenced-by-count")
    return {
        "doi": extract_doi(message.get("DOI")) if isinstance(message.get("DOI"), str) else None,
        "title": _first(message.get("title")),
        "journal": _first(message.get("container-title")),
        "year": _issued_year(message),
        "authors": _author_names(message),
        "cited_by_count": int(cited) if isinstance(cited, int) else None,
        "abstract": strip_jats(message.get("abstract") if isinstance(message.get("abstract"), str) else None),
    }


@dataclass
class CrossrefClient:
    user_agent: str
    mailto: str = ""
    timeout_seconds: float = 20.0
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, *, cache: Cache | None = None) -> "CrossrefClient":
        return cls(
            user_agent=settings.crossref_user_agent,
            mailto=settings.crossref_mailto,
            timeout_seconds=settings.api_timeout_seconds,
            cache=cache,
        )

    def _client(self) -> requests.Session:
        session = getattr(self._session_local, "session", None)
        if session is None:
            session = requests.Session()
            self._session_local.session = session
        return session

    def _headers(self) -> dict[str, str]:
        agent = self.user_agent
        if self.mailto:
            agent = f"{agent} (mailto:{self.mailto})"
        return {"User-Agent": agent}

    def _ttl_seconds(self, suggested_days: int) -> float:
        cache = self.cache
        if not cache:
            return 0.0
        days = min(int(suggested_days), int(cache.settings.cache_http_ttl_days))
        return float(max(0, days)) * 86400.0

    def get_work_by_doi(self, doi: str) -> dict | None:
        """Return the raw Crossref ``message`` for ``doi``; None if unknown.

        Raises ``RuntimeError`` when every attempt fails so callers can tell a
        lookup failure from a missing work.
        """
        doi_norm = extract_doi(doi)
        if not doi_norm:
            return None
        cache = self.cache
        if cache and cache.settings.cache_enabled:
            hit, cached = cache.get_json("crossref.work_by_doi", [doi_norm])
            if hit:
                return cached
        url = f"{_WORKS_URL}/{quote(doi_norm, safe='/()._;:-')}"
        for attempt in range(3):
            try:
                record_http_request(cache, "crossref.work_by_doi")
                resp = self._client().get(url, headers=self._headers(), timeout=self.timeout_seconds)
                if resp.status_code == 404:
                    if cache and cache.settings.cache_enabled:
                        cache.set_json("crossref.work_by_doi", [doi_norm], None, ttl_seconds=self._ttl_seconds(1))
                    return None
                resp.raise_for_status()
                msg = (resp.json() or {}).get("message")
                if cache and cache.settings.cache_enabled:
                    cache.set_json("crossref.work_by_doi", [doi_norm], msg, ttl_seconds=self._ttl_seconds(90))
                return msg
            except requests.RequestException:
                logger.warning("Crossref lookup failed (doi=%s, attempt=%d).", doi_norm, attempt + 1)
                backoff_sleep(attempt)
        raise RuntimeError(f"Crossref lookup failed for {doi_norm}.")
