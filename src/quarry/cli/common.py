"""Helpers shared by the quarry CLI commands: config, logging, database."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_config, err_no_db
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.db.connection import Database
from quarry.db.schema import initialize
from quarry.log import configure_logging

console = Console()


def load_cli_config(verbose: bool = False) -> QuarryConfig:
    """Load config and configure logging, or exit with an actionable error."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    configure_logging("DEBUG" if verbose else cfg.logging.level)
    return cfg


def resolve_db(db: Path | None, cfg: QuarryConfig) -> Path:
    return db if db is not None else Path(cfg.storage.db)


def open_db(db_path: Path, *, must_exist: bool = True) -> sqlite3.Connection:
    """Open (and migrate) the knowledge-base database."""
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
