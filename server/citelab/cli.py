from __future__ import annotations

import argparse
import os
from pathlib import Path

_DEFAULT_BLANK_DB_PATH = Path("./data/citelab-blank.db").resolve()


def add_runtime_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--blank-db",
        action="store_true",
        help="Use a blank sqlite DB at ./data/citelab-blank.db (overrides CITELAB_DB_URL).",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the shared cache for this run.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override CITELAB_LOG_LEVEL.",
    )


def apply_runtime_overrides(args: argparse.Namespace) -> None:
    if getattr(args, "no_cache", False):
        os.environ["CITELAB_CACHE_ENABLED"] = "false"
    if getattr(args, "log_level", None):
        os.environ["CITELAB_LOG_LEVEL"] = args.log_level
    if getattr(args, "blank_db", False):
        _DEFAULT_BLANK_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        if _DEFAULT_BLANK_DB_PATH.exists():
            _DEFAULT_BLANK_DB_PATH.unlink()
        os.environ["CITELAB_DB_URL"] = f"sqlite:///{_DEFAULT_BLANK_DB_PATH}"
