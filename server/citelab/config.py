from __future__ import annotations

import os
from dataclasses import dataclass


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _env_int(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except Exception as e:
            raise ValueError(f"Invalid integer value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_float(name: str, default: float, *, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = float(default)
    else:
        try:
            value = float(raw)
        except Exception as e:
            raise ValueError(f"Invalid float value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")


@dataclass(frozen=True)
class Settings:
    db_url: str
    db_busy_timeout_ms: int
    log_level: str

    cache_enabled: bool
    cache_http_ttl_days: int

    api_timeout_seconds: float
    pubmed_tool: str
    pubmed_email: str
    pubmed_api_key: str
    crossref_mailto: str
    crossref_user_agent: str

    graph_max_links_per_node: int
    graph_max_extra_nodes: int
    graph_result_ttl_seconds: int
    graph_metadata_ttl_days: int

    enrich_enabled: bool
    enrich_max_pmids: int
    enrich_pmid_batch_size: int
    enrich_max_dois: int
    enrich_throttle_ms: int
    enrich_workers: int

    refresh_batch_size: int

    @classmethod
    def from_env(cls) -> "Settings":
        db_url = _env_str("CITELAB_DB_URL", "sqlite:///./data/citelab.db")
        db_busy_timeout_ms = _env_int("CITELAB_DB_BUSY_TIMEOUT_MS", 30000, min_value=0, max_value=600000)
        log_level = _env_str("CITELAB_LOG_LEVEL", "INFO")

        cache_enabled = _env_bool("CITELAB_CACHE_ENABLED", True)
        cache_http_ttl_days = _env_int("CITELAB_CACHE_HTTP_TTL_DAYS", 30, min_value=0, max_value=3650)

        api_timeout_seconds = _env_float("CITELAB_API_TIMEOUT_SECONDS", 20.0, min_value=1.0, max_value=300.0)
        pubmed_tool = _env_str("CITELAB_PUBMED_TOOL", "citelab")
        pubmed_email = _env_str("CITELAB_PUBMED_EMAIL", "")
        pubmed_api_key = _env_str("CITELAB_PUBMED_API_KEY", "")
        crossref_mailto = _env_str("CITELAB_CROSSREF_MAILTO", "")
        crossref_user_agent = _env_str("CITELAB_CROSSREF_USER_AGENT", "citelab/0.1")

        graph_max_links_per_node = _env_int("CITELAB_GRAPH_MAX_LINKS_PER_NODE", 20, min_value=1, max_value=100)
        graph_max_extra_nodes = _env_int("CITELAB_GRAPH_MAX_EXTRA_NODES", 2000, min_value=10, max_value=5000)
        graph_result_ttl_seconds = _env_int("CITELAB_GRAPH_RESULT_TTL_SECONDS", 600, min_value=0, max_value=86400)
        graph_metadata_ttl_days = _env_int("CITELAB_GRAPH_METADATA_TTL_DAYS", 30, min_value=1, max_value=365)

        enrich_enabled = _env_bool("CITELAB_ENRICH_ENABLED", True)
        enrich_max_pmids = _env_int("CITELAB_ENRICH_MAX_PMIDS", 500, min_value=0, max_value=5000)
        enrich_pmid_batch_size = _env_int("CITELAB_ENRICH_PMID_BATCH_SIZE", 200, min_value=1, max_value=500)
        enrich_max_dois = _env_int("CITELAB_ENRICH_MAX_DOIS", 100, min_value=0, max_value=1000)
        enrich_throttle_ms = _env_int("CITELAB_ENRICH_THROTTLE_MS", 200, min_value=0, max_value=10000)
        enrich_workers = _env_int("CITELAB_ENRICH_WORKERS", 2, min_value=1, max_value=16)

        refresh_batch_size = _env_int("CITELAB_REFRESH_BATCH_SIZE", 50, min_value=1, max_value=200)

        return cls(
            db_url=db_url,
            db_busy_timeout_ms=db_busy_timeout_ms,
            log_level=log_level,
            cache_enabled=cache_enabled,
            cache_http_ttl_days=cache_http_ttl_days,
            api_timeout_seconds=api_timeout_seconds,
            pubmed_tool=pubmed_tool,
            pubmed_email=pubmed_email,
            pubmed_api_key=pubmed_api_key,
            crossref_mailto=crossref_mailto,
            crossref_user_agent=crossref_user_agent,
            graph_max_links_per_node=graph_max_links_per_node,
            graph_max_extra_nodes=graph_max_extra_nodes,
            graph_result_ttl_seconds=graph_result_ttl_seconds,
            graph_metadata_ttl_days=graph_metadata_ttl_days,
            enrich_enabled=enrich_enabled,
            enrich_max_pmids=enrich_max_pmids,
            enrich_pmid_batch_size=enrich_pmid_batch_size,
            enrich_max_dois=enrich_max_dois,
            enrich_throttle_ms=enrich_throttle_ms,
            enrich_workers=enrich_workers,
            refresh_batch_size=refresh_batch_size,
        )
