"""Alembic plumbing behind ``citelab migrate``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from server.citelab.config import Settings
from server.citelab.core.db import get_engine

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[3]
ALEMBIC_INI = ROOT_DIR / "alembic.ini"
ALEMBIC_SCRIPT_DIR = ROOT_DIR / "migrations"


@dataclass(frozen=True)
class RevisionState:
    current: tuple[str, ...]
    head: tuple[str, ...]

    @property
    def at_head(self) -> bool:
        return bool(self.head) and set(self.current) == set(self.head)

    def to_dict(self) -> dict:
        return {"current": list(self.current), "head": list(self.head), "at_head": self.at_head}


def _alembic_config(settings: Settings) -> Config:
    cfg = Config(str(ALEMBIC_INI))
    cfg.set_main_option("script_location", str(ALEMBIC_SCRIPT_DIR))
    # migrations/env.py builds its engine from these settings.
    cfg.attributes["settings"] = settings
    return cfg


def revision_state(settings: Settings) -> RevisionState:
    script = ScriptDirectory.from_config(_alembic_config(settings))
    with get_engine(settings).connect() as connection:
        current = MigrationContext.configure(connection).get_current_heads()
    return RevisionState(current=tuple(sorted(current)), head=tuple(sorted(script.get_heads())))


def upgrade_to_head(settings: Settings) -> RevisionState:
    before = revision_state(settings)
    if before.at_head:
        return before
    command.upgrade(_alembic_config(settings), "head")
    after = revision_state(settings)
    logger.info(
        "Upgraded database schema from %s to %s.",
        ",".join(before.current) or "empty",
        ",".join(after.current) or "none",
    )
    return after
