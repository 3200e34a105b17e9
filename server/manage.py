from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from server.citelab.citations import (
    add_citation,
    document_lock,
    remove_citation,
    renumber_project,
    reorder_documents,
    synchronize_citations,
    synchronize_from_content,
    update_citation,
)
from server.citelab.cli import add_runtime_args, apply_runtime_overrides
from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.core.db import session_scope
from server.citelab.core.errors import NotFoundError, NumberingInvariantError
from server.citelab.core.migrations import revision_state, upgrade_to_head
from server.citelab.core.models import Citation
from server.citelab.core.throttle import Throttle
from server.citelab.graph import (
    GraphMetadataCache,
    GraphParams,
    GraphService,
    refresh_project_references,
    warm_linked_metadata,
)
from server.citelab.sources.pubmed import PubMedClient

logger = logging.getLogger("server.manage")


def _citation_dict(citation: Citation) -> dict:
    return {
        "id": citation.id,
        "document_id": citation.document_id,
        "article_id": citation.article_id,
        "inline_number": citation.inline_number,
        "sub_number": citation.sub_number,
        "order_index": citation.order_index,
        "page_range": citation.page_range,
        "note": citation.note,
    }


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Citation numbering and citation graph tools.")
    add_runtime_args(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-citation", help="Insert a citation into a document.")
    add.add_argument("document_id")
    add.add_argument("article_id")
    add.add_argument("--page-range")
    add.add_argument("--note")

    upd = sub.add_parser("update-citation", help="Change page range and/or note of a citation.")
    upd.add_argument("document_id")
    upd.add_argument("citation_id")
    upd.add_argument("--page-range")
    upd.add_argument("--note")

    rem = sub.add_parser("remove-citation", help="Delete a citation and close the numbering gap.")
    rem.add_argument("document_id")
    rem.add_argument("citation_id")

    syn = sub.add_parser("sync-citations", help="Renumber a document by first appearance.")
    syn.add_argument("document_id")
    syn.add_argument(
        "--ids",
        nargs="*",
        help="Citation ids in document order. Defaults to the markers found in the document content.",
    )

    reo = sub.add_parser("reorder", help="Set the document order of a project.")
    reo.add_argument("project_id")
    reo.add_argument("document_ids", nargs="+")

    ren = sub.add_parser("renumber", help="Renumber citations across all documents of a project.")
    ren.add_argument("project_id")

    graph = sub.add_parser("graph", help="Build (or load cached) citation graph JSON for a project.")
    graph.add_argument("project_id")
    graph.add_argument("--filter", default="all")
    graph.add_argument("--year-from", type=int)
    graph.add_argument("--year-to", type=int)
    graph.add_argument("--stats-quality", type=int, default=0)
    graph.add_argument("--max-links-per-node", type=int)
    graph.add_argument("--max-extra-nodes", type=int)
    graph.add_argument("--sort-by", default="citations")
    graph.add_argument("--depth", type=int, default=1)
    graph.add_argument("--source-query", action="append", dest="source_queries", default=[])
    graph.add_argument("--source", action="append", dest="sources", default=[])
    graph.add_argument("--clusters", action="store_true", help="Enable clustering of levels 2 and 3.")
    graph.add_argument("--cluster-by", default="auto")
    graph.add_argument("--fresh", action="store_true", help="Drop cached graphs for the project first.")

    ref = sub.add_parser("refresh-references", help="Pull reference/cited-by PMIDs from PubMed.")
    ref.add_argument("project_id")
    ref.add_argument("--stale-after-days", type=int)
    ref.add_argument("--no-warm", action="store_true", help="Skip warming the graph metadata cache.")

    sub.add_parser("reap-cache", help="Delete expired cache entries.")

    mig = sub.add_parser("migrate", help="Upgrade the database schema to the latest revision.")
    mig.add_argument("--check", action="store_true", help="Only report; exit 1 when an upgrade is pending.")
    return parser


def _graph_params(args: argparse.Namespace, settings: Settings) -> GraphParams:
    return GraphParams.from_query(
        {
            "filter": args.filter,
            "year_from": args.year_from,
            "year_to": args.year_to,
            "stats_quality": args.stats_quality,
            "max_links_per_node": args.max_links_per_node or settings.graph_max_links_per_node,
            "max_extra_nodes": args.max_extra_nodes or settings.graph_max_extra_nodes,
            "sort_by": args.sort_by,
            "depth": args.depth,
            "source_queries": args.source_queries,
            "sources": args.sources,
            "enable_clustering": args.clusters,
            "cluster_by": args.cluster_by,
        }
    )


def _run(args: argparse.Namespace, settings: Settings) -> dict:
    if args.command == "add-citation":
        with document_lock(args.document_id), session_scope(settings) as db:
            citation = add_citation(db, args.document_id, args.article_id, page_range=args.page_range, note=args.note)
            return _citation_dict(citation)

    if args.command == "update-citation":
        fields = {}
        if args.page_range is not None:
            fields["page_range"] = args.page_range
        if args.note is not None:
            fields["note"] = args.note
        with document_lock(args.document_id), session_scope(settings) as db:
            citation = update_citation(db, args.citation_id, document_id=args.document_id, **fields)
            return _citation_dict(citation)

    if args.command == "remove-citation":
        with document_lock(args.document_id), session_scope(settings) as db:
            remove_citation(db, args.citation_id, document_id=args.document_id)
            return {"deleted": args.citation_id}

    if args.command == "sync-citations":
        with document_lock(args.document_id), session_scope(settings) as db:
            if args.ids is None:
                result = synchronize_from_content(db, args.document_id)
            else:
                result = synchronize_citations(db, args.document_id, args.ids)
            return {"deleted": result.deleted, "changed": result.changed}

    if args.command == "reorder":
        with session_scope(settings) as db:
            return {"updated": reorder_documents(db, args.project_id, args.document_ids)}

    if args.command == "renumber":
        with session_scope(settings) as db:
            result = renumber_project(db, args.project_id)
        GraphService(settings).invalidate(args.project_id)
        return result.to_dict()

    if args.command == "graph":
        service = GraphService.from_settings(settings)
        if args.fresh:
            service.invalidate(args.project_id)
        return service.get_graph(args.project_id, _graph_params(args, settings))

    if args.command == "refresh-references":
        cache = Cache(settings=settings)
        pubmed = PubMedClient.from_settings(settings, cache=cache)
        throttle = Throttle.from_millis(settings.enrich_throttle_ms)
        with session_scope(settings) as db:
            report = refresh_project_references(
                db,
                args.project_id,
                pubmed,
                throttle=throttle,
                batch_size=settings.refresh_batch_size,
                stale_after_days=args.stale_after_days,
            )
        # Warm only after the link transaction has committed.
        if not args.no_warm:
            warm_linked_metadata(
                report,
                pubmed,
                GraphMetadataCache(cache=cache, ttl_days=settings.graph_metadata_ttl_days),
                throttle=throttle,
                batch_size=settings.refresh_batch_size,
            )
        GraphService(settings, cache=cache).invalidate(args.project_id)
        return report.to_dict()

    if args.command == "reap-cache":
        return {"reaped": Cache(settings=settings).reap_expired()}

    if args.command == "migrate":
        state = revision_state(settings) if args.check else upgrade_to_head(settings)
        return state.to_dict()

    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _parser().parse_args(argv)
    apply_runtime_overrides(args)
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        payload = _run(args, settings)
    except NotFoundError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except (ValueError, NumberingInvariantError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except Exception:
        logger.exception("Command failed: %s", args.command)
        return 3

    print(json.dumps(payload, indent=2, sort_keys=True))
    if args.command == "migrate" and not payload["at_head"]:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
