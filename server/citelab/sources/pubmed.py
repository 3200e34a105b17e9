from __future__ import annotations

import logging
import re
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

import requests

from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.sources.http import backoff_sleep, record_http_request

logger = logging.getLogger(__name__)

_EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
_EFETCH_URL = f"{_EUTILS_BASE}/efetch.fcgi"
_ELINK_URL = f"{_EUTILS_BASE}/elink.fcgi"

LINK_REFERENCES = "pubmed_pubmed_refs"
LINK_CITED_BY = "pubmed_pubmed_citedin"

_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")


def _clean_text(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = " ".join(value.replace("\n", " ").split())
    return cleaned or None


def _node_text(node: ET.Element | None) -> str | None:
    if node is None:
        return None
    return _clean_text("".join(node.itertext()))


def _parse_year(pubdate: str | None) -> int | None:
    if not pubdate:
        return None
    m = _YEAR_RE.search(pubdate)
    if not m:
        return None
    try:
        return int(m.group(0))
    except Exception:
        return None


def _extract_abstract(article: ET.Element) -> str | None:
    parts: list[str] = []
    for node in article.findall(".//Abstract/AbstractText"):
        text = " ".join(" ".join(node.itertext()).split())
        if not text:
            continue
        label = node.attrib.get("Label") or node.attrib.get("label")
        if isinstance(label, str) and label.strip():
            parts.append(f"{label.strip()}: {text}")
        else:
            parts.append(text)
    if not parts:
        return None
    return "\n".join(parts)


def _extract_authors(article: ET.Element) -> list[str]:
    names: list[str] = []
    for author in article.findall(".//AuthorList/Author"):
        collective = _node_text(author.find("CollectiveName"))
        if collective:
            names.append(collective)
            continue
        last = _node_text(author.find("LastName")) or ""
        initials = _node_text(author.find("Initials")) or ""
        name = f"{last} {initials}".strip()
        if name:
            names.append(name)
    return names


def _extract_doi(record: ET.Element) -> str | None:
    for node in record.findall(".//PubmedData/ArticleIdList/ArticleId"):
        if (node.attrib.get("IdType") or "").lower() == "doi":
            value = _node_text(node)
            if value:
                return value.lower()
    for node in record.findall(".//Article/ELocationID"):
        if (node.attrib.get("EIdType") or "").lower() == "doi":
            value = _node_text(node)
            if value:
                return value.lower()
    return None


def _summarize_pubmed_article(record: ET.Element) -> dict | None:
    citation = record.find("MedlineCitation")
    if citation is None:
        return None
    pmid = _node_text(citation.find("PMID"))
    if not pmid:
        return None
    article = citation.find("Article")
    if article is None:
        return {"pmid": pmid}

    pubdate = article.find("Journal/JournalIssue/PubDate")
    year = None
    if pubdate is not None:
        year = _parse_year(_node_text(pubdate.find("Year")) or _node_text(pubdate.find("MedlineDate")))
    if year is None:
        year = _parse_year(_node_text(article.find("ArticleDate/Year")))

    return {
        "pmid": pmid,
        "doi": _extract_doi(record),
        "title": _node_text(article.find("ArticleTitle")),
        "abstract": _extract_abstract(article),
        "authors": _extract_authors(article),
        "journal": _node_text(article.find("Journal/Title")),
        "year": year,
    }


def parse_efetch_xml(xml_text: str) -> list[dict]:
    """Summarize every ``PubmedArticle`` of an efetch response."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []
    out: list[dict] = []
    for record in root.iter("PubmedArticle"):
        summarized = _summarize_pubmed_article(record)
        if summarized:
            out.append(summarized)
    return out


def parse_elink_xml(xml_text: str) -> dict[str, list[str]]:
    """Map each source PMID of an eLink response to its linked PMIDs."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return {}
    out: dict[str, list[str]] = {}
    for linkset in root.iter("LinkSet"):
        source = _node_text(linkset.find("IdList/Id"))
        if not source:
            continue
        linked: list[str] = []
        for node in linkset.findall("LinkSetDb/Link/Id"):
            pmid = _node_text(node)
            if pmid and pmid != source and pmid not in linked:
                linked.append(pmid)
        out[source] = linked
    return out


@dataclass
class PubMedClient:
    tool: str = "citelab"
    email: str = ""
    api_key: str = ""
    user_agent: str = "citelab/0.1"
    timeout_seconds: float = 20.0
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, *, cache: Cache | None = None) -> "PubMedClient":
        return cls(
            tool=settings.pubmed_tool,
            email=settings.pubmed_email,
            api_key=settings.pubmed_api_key,
            user_agent=settings.crossref_user_agent,
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
        return {"User-Agent": self.user_agent}

    def _ttl_seconds(self, suggested_days: int) -> float:
        cache = self.cache
        if not cache:
            return 0.0
        days = min(int(suggested_days), int(cache.settings.cache_http_ttl_days))
        return float(max(0, days)) * 86400.0

    def _base_params(self, *, retmode: str = "xml") -> dict:
        params: dict = {"db": "pubmed", "retmode": retmode}
        tool = (self.tool or "").strip()
        if tool:
            params["tool"] = tool
        email = (self.email or "").strip()
        if email:
            params["email"] = email
        api_key = (self.api_key or "").strip()
        if api_key:
            params["api_key"] = api_key
        return params

    def _get_text(self, url: str, *, params: dict, namespace: str) -> str | None:
        for attempt in range(3):
            try:
                record_http_request(self.cache, namespace)
                resp = self._client().get(url, headers=self._headers(), params=params, timeout=self.timeout_seconds)
                resp.raise_for_status()
                return resp.text or ""
            except requests.RequestException:
                logger.warning("PubMed request failed (url=%s, attempt=%d).", url, attempt + 1)
                backoff_sleep(attempt)
        return None

    def fetch_by_pmids(self, pmids: list[str]) -> list[dict]:
        """Fetch article records for ``pmids`` in one efetch call.

        Cached records are served without a request. Returns records in input
        order; PMIDs PubMed does not know are omitted. Raises ``RuntimeError``
        when the request keeps failing so callers can count the batch as lost.
        """
        wanted: list[str] = []
        out_by_pmid: dict[str, dict] = {}
        cache = self.cache
        for pmid in pmids:
            pmid = str(pmid or "").strip()
            if not pmid or pmid in out_by_pmid or pmid in wanted:
                continue
            if cache and cache.settings.cache_enabled:
                hit, cached = cache.get_json("pubmed.record_by_pmid", [pmid])
                if hit and isinstance(cached, dict):
                    out_by_pmid[pmid] = cached
                    continue
            wanted.append(pmid)

        if wanted:
            params = self._base_params(retmode="xml")
            params["id"] = ",".join(wanted)
            xml_text = self._get_text(_EFETCH_URL, params=params, namespace="pubmed.efetch")
            if xml_text is None:
                raise RuntimeError(f"PubMed efetch failed for {len(wanted)} PMID(s).")
            for record in parse_efetch_xml(xml_text):
                pmid = record.get("pmid")
                if not pmid:
                    continue
                out_by_pmid[pmid] = record
                if cache and cache.settings.cache_enabled:
                    cache.set_json("pubmed.record_by_pmid", [pmid], record, ttl_seconds=self._ttl_seconds(90))

        out: list[dict] = []
        for pmid in pmids:
            record = out_by_pmid.get(str(pmid or "").strip())
            if record is not None and record not in out:
                out.append(record)
        return out

    def get_links(self, pmids: list[str], *, linkname: str) -> dict[str, list[str]] | None:
        """Return ``{pmid: [linked pmids]}`` for one eLink relation, or None on failure."""
        pmids = [str(p).strip() for p in pmids if str(p or "").strip()]
        if not pmids:
            return {}
        params = self._base_params(retmode="xml")
        params.pop("db", None)
        params["dbfrom"] = "pubmed"
        params["db"] = "pubmed"
        params["linkname"] = linkname
        params["id"] = pmids
        xml_text = self._get_text(_ELINK_URL, params=params, namespace=f"pubmed.elink.{linkname}")
        if xml_text is None:
            return None
        links = parse_elink_xml(xml_text)
        return {pmid: links.get(pmid, []) for pmid in pmids}
