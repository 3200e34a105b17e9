from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future

from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.core.db import session_scope
from server.citelab.graph.builder import build_citation_graph
from server.citelab.graph.enrich import GraphEnricher
from server.citelab.graph.metadata import GraphMetadataCache
from server.citelab.graph.types import GraphParams

logger = logging.getLogger(__name__)

RESULT_NAMESPACE = "graph.result"


class GraphService:
    """Serves citation graphs from the shared cache, building on a miss.

    Concurrent requests for the same project and parameters wait for one
    build instead of starting their own.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache: Cache | None = None,
        enricher: GraphEnricher | None = None,
        builder: Callable[..., dict] = build_citation_graph,
    ) -> None:
        self.settings = settings
        self.cache = cache or Cache(settings=settings)
        self.enricher = enricher
        self.metadata_cache = GraphMetadataCache(cache=self.cache, ttl_days=settings.graph_metadata_ttl_days)
        self._builder = builder
        self._lock = threading.Lock()
        self._inflight: dict[str, Future] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphService":
        cache = Cache(settings=settings)
        enricher = GraphEnricher.from_settings(settings, cache=cache) if settings.enrich_enabled else None
        return cls(settings, cache=cache, enricher=enricher)

    def _scoped(self, project_id: str) -> Cache:
        return self.cache.scoped(f"project:{project_id}")

    def _build(self, project_id: str, params: GraphParams) -> dict:
        with session_scope(self.settings, read_only=True) as db:
            return self._builder(
                db,
                project_id,
                params,
                metadata_cache=self.metadata_cache,
                enricher=self.enricher,
            )

    def get_graph(self, project_id: str, params: GraphParams) -> dict:
        params = params.normalized(
            max_links_cap=self.settings.graph_max_links_per_node,
            max_extra_cap=self.settings.graph_max_extra_nodes,
        )
        parts = params.cache_parts()
        scoped = self._scoped(project_id)
        hit, cached = scoped.get_json(RESULT_NAMESPACE, parts)
        if hit and isinstance(cached, dict):
            return cached

        key = "|".join([project_id, *parts])
        with self._lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
        if not owner:
            logger.debug("Waiting for in-flight graph build (project=%s).", project_id)
            return future.result()

        try:
            result = self._build(project_id, params)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            scoped.set_json(RESULT_NAMESPACE, parts, result, ttl_seconds=self.settings.graph_result_ttl_seconds)
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def invalidate(self, project_id: str) -> int:
        return self._scoped(project_id).invalidate(RESULT_NAMESPACE)
