from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from server.citelab.core.cache import Cache

_FIELDS = ("title", "authors", "year", "doi", "journal", "cited_by_count", "stats_quality")
_NAMESPACES = {"pmid": "graph.meta.pmid", "doi": "graph.meta.doi"}


@dataclass(frozen=True)
class GraphMetadataCache:
    """Bibliographic details of external works keyed by PMID or DOI.

    Entries outlive a single graph build so that placeholders for popular
    references are labelled without another lookup.
    """

    cache: Cache
    ttl_days: int = 30

    def _namespace(self, kind: str) -> str:
        try:
            return _NAMESPACES[kind]
        except KeyError:
            raise ValueError(f"Unknown metadata kind: {kind!r}") from None

    def get(self, kind: str, ident: str) -> dict[str, Any] | None:
        ident = str(ident or "").strip().lower()
        if not ident:
            return None
        hit, value = self.cache.get_json(self._namespace(kind), [ident])
        if hit and isinstance(value, dict):
            return value
        return None

    def get_many(self, kind: str, idents: Iterable[str]) -> dict[str, dict[str, Any]]:
        idents = [str(i or "").strip() for i in idents]
        idents = [i for i in idents if i]
        found = self.cache.get_many_json(self._namespace(kind), [[i.lower()] for i in idents])
        return {idents[i]: value for i, value in sorted(found.items()) if isinstance(value, dict)}

    def set(self, kind: str, ident: str, meta: Mapping[str, Any]) -> bool:
        ident = str(ident or "").strip().lower()
        if not ident:
            return False
        value = {k: meta.get(k) for k in _FIELDS if meta.get(k) is not None}
        if not value:
            return False
        return self.cache.set_json(self._namespace(kind), [ident], value, ttl_seconds=float(self.ttl_days) * 86400.0)
