from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.core.throttle import Throttle
from server.citelab.graph.metadata import GraphMetadataCache
from server.citelab.graph.stats import abstract_quality
from server.citelab.graph.types import GraphNode
from server.citelab.sources.crossref import CrossrefClient, summarize_work
from server.citelab.sources.pubmed import PubMedClient

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentReport:
    cache_hits: int = 0
    pmids_requested: int = 0
    pmids_enriched: int = 0
    dois_requested: int = 0
    dois_enriched: int = 0
    failed_batches: int = 0
    failed_dois: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


def _with_quality(record: dict[str, Any]) -> dict[str, Any]:
    meta = dict(record)
    meta["stats_quality"] = abstract_quality(record.get("abstract"))
    return meta


class GraphEnricher:
    """Fills placeholder nodes with metadata from the cache, PubMed and Crossref.

    PMID batches and DOI lookups run on one thread pool and share a single
    throttle. A failed lookup is logged and leaves its nodes as placeholders.
    """

    def __init__(
        self,
        *,
        pubmed: PubMedClient | None = None,
        crossref: CrossrefClient | None = None,
        metadata_cache: GraphMetadataCache | None = None,
        throttle: Throttle | None = None,
        max_pmids: int = 500,
        pmid_batch_size: int = 200,
        max_dois: int = 100,
        max_workers: int = 2,
    ) -> None:
        self.pubmed = pubmed
        self.crossref = crossref
        self.metadata_cache = metadata_cache
        self.throttle = throttle or Throttle(0.0)
        self.max_pmids = max(0, int(max_pmids))
        self.pmid_batch_size = max(1, int(pmid_batch_size))
        self.max_dois = max(0, int(max_dois))
        self.max_workers = max(1, int(max_workers))

    @classmethod
    def from_settings(cls, settings: Settings, *, cache: Cache | None = None) -> "GraphEnricher":
        metadata_cache = None
        if cache is not None:
            metadata_cache = GraphMetadataCache(cache=cache, ttl_days=settings.graph_metadata_ttl_days)
        return cls(
            pubmed=PubMedClient.from_settings(settings, cache=cache),
            crossref=CrossrefClient.from_settings(settings, cache=cache),
            metadata_cache=metadata_cache,
            throttle=Throttle.from_millis(settings.enrich_throttle_ms),
            max_pmids=settings.enrich_max_pmids,
            pmid_batch_size=settings.enrich_pmid_batch_size,
            max_dois=settings.enrich_max_dois,
            max_workers=settings.enrich_workers,
        )

    def _apply_cached(self, nodes: list[GraphNode], report: EnrichmentReport) -> None:
        if self.metadata_cache is None:
            return
        by_pmid = {n.pmid: n for n in nodes if n.pmid}
        for pmid, meta in self.metadata_cache.get_many("pmid", list(by_pmid)).items():
            by_pmid[pmid].apply_metadata(meta)
            report.cache_hits += 1
        by_doi = {n.doi: n for n in nodes if not n.pmid and n.doi}
        for doi, meta in self.metadata_cache.get_many("doi", list(by_doi)).items():
            by_doi[doi].apply_metadata(meta)
            report.cache_hits += 1

    def _fetch_pmid_batch(self, pmids: list[str]) -> list[dict]:
        self.throttle.wait()
        return self.pubmed.fetch_by_pmids(pmids)

    def _fetch_doi(self, doi: str) -> dict | None:
        self.throttle.wait()
        message = self.crossref.get_work_by_doi(doi)
        if not isinstance(message, dict):
            return None
        return summarize_work(message)

    def _remember(self, kind: str, ident: str, meta: dict[str, Any]) -> None:
        if self.metadata_cache is not None:
            self.metadata_cache.set(kind, ident, meta)

    def enrich(self, nodes: list[GraphNode]) -> EnrichmentReport:
        report = EnrichmentReport()
        pending = [n for n in nodes if n.needs_enrichment]
        if not pending:
            return report
        self._apply_cached(pending, report)

        pmid_nodes: dict[str, GraphNode] = {}
        doi_nodes: dict[str, GraphNode] = {}
        for node in pending:
            if not node.needs_enrichment:
                continue
            if node.pmid and self.pubmed is not None and len(pmid_nodes) < self.max_pmids:
                pmid_nodes.setdefault(node.pmid, node)
            elif not node.pmid and node.doi and self.crossref is not None and len(doi_nodes) < self.max_dois:
                doi_nodes.setdefault(node.doi, node)

        pmids = list(pmid_nodes)
        batches = [pmids[i : i + self.pmid_batch_size] for i in range(0, len(pmids), self.pmid_batch_size)]
        report.pmids_requested = len(pmids)
        report.dois_requested = len(doi_nodes)
        if not batches and not doi_nodes:
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {}
            for batch in batches:
                futures[pool.submit(self._fetch_pmid_batch, batch)] = ("pmid", batch)
            for doi in doi_nodes:
                futures[pool.submit(self._fetch_doi, doi)] = ("doi", doi)

            for future in as_completed(futures):
                kind, item = futures[future]
                try:
                    result = future.result()
                except Exception:
                    if kind == "pmid":
                        report.failed_batches += 1
                        logger.exception("PubMed enrichment batch failed (%d PMIDs).", len(item))
                    else:
                        report.failed_dois += 1
                        logger.exception("Crossref enrichment failed (doi=%s).", item)
                    continue

                if kind == "pmid":
                    for record in result or []:
                        node = pmid_nodes.get(str(record.get("pmid") or ""))
                        if node is None:
                            continue
                        meta = _with_quality(record)
                        node.apply_metadata(meta)
                        self._remember("pmid", node.pmid or "", meta)
                        report.pmids_enriched += 1
                elif result:
                    node = doi_nodes[item]
                    meta = _with_quality(result)
                    node.apply_metadata(meta)
                    self._remember("doi", item, meta)
                    report.dois_enriched += 1

        logger.info(
            "Enriched placeholders: %d/%d PMIDs, %d/%d DOIs, %d cache hits, %d failed batches, %d failed DOIs.",
            report.pmids_enriched,
            report.pmids_requested,
            report.dois_enriched,
            report.dois_requested,
            report.cache_hits,
            report.failed_batches,
            report.failed_dois,
        )
        return report
