from __future__ import annotations

from logging.config import fileConfig

from alembic import context

from server.citelab.config import Settings
from server.citelab.core import models  # noqa: F401
from server.citelab.core.db import Base, get_engine

config = context.config

# `citelab migrate` passes its settings and has already configured logging;
# a bare `alembic` run reads CITELAB_* from the environment.
settings = config.attributes.get("settings")
if settings is None:
    settings = Settings.from_env()
    if config.config_file_name is not None:
        fileConfig(config.config_file_name, disable_existing_loggers=False)

if context.is_offline_mode():
    raise RuntimeError("Offline (--sql) migrations are not supported; run against a database.")

with get_engine(settings).connect() as connection:
    context.configure(
        connection=connection,
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()
