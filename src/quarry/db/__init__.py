"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.schema import initialize
from quarry.db.vectors import (
    ensure_vec_table,
    model_to_slug,
    vec_table_for_model,
    vec_table_name,
)

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_for_model",
    "vec_table_name",
]
