"""Baseline schema: projects, articles, documents, citations, cache.

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00
"""
from __future__ import annotations

from alembic import op

from server.citelab.core import models  # noqa: F401
from server.citelab.core.db import Base

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
