"""quarry remove — delete a source and everything derived from it.

Removes, in order:
  - chunk embeddings (all vec tables)
  - chunks (+ FTS5 index entries)
  - the stored copy of pdf/txt uploads
  - the source record

Usage:
  quarry remove --tenant acme --source 3f2c...
  quarry remove --tenant acme --source 3f2c... --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.cli.errors import err_source_not_found, warn_stale_cache
from quarry.db.models import SourceKind
from quarry.db.repository import Repository
from quarry.db.store import ChunkStore
from quarry.db.vectors import list_vec_tables


def remove_cmd(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id.")],
    source: Annotated[str, typer.Option("--source", "-s", help="Source id to remove.")],
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Remove a source and all its chunks from the knowledge base."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    repo = Repository(conn)

    try:
        existing = repo.get_source(tenant, source)
        if existing is None:
            console.print(err_source_not_found(tenant, source))
            raise typer.Exit(0)

        store = ChunkStore(repo, cfg.embedding.model, cfg.embedding.dimensions)
        chunk_count = store.count_by_source(tenant, source)
        vec_tables = len(list_vec_tables(conn))

        console.print(f"\nRemove source: [bold]{existing.name}[/] ({existing.kind.value})")
        console.print(
            f"  Chunks: {chunk_count}  |  Vec entries: {chunk_count} (×{vec_tables} tables)"
        )

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = store.delete_by_source(tenant, source)
        if existing.kind in (SourceKind.PDF, SourceKind.TXT) and existing.location:
            _remove_stored_file(Path(cfg.storage.root), existing.location)
        repo.delete_source(tenant, source)

        console.print(f"\n[green]✓[/] Removed: {existing.name}")
        console.print(f"  {removed} chunks deleted")
        if cfg.cache.backend == "sqlite":
            console.print(f"\n{warn_stale_cache()}")
    finally:
        conn.close()


def _remove_stored_file(root: Path, location: str) -> None:
    root = root.resolve()
    path = (root / location).resolve()
    if root not in path.parents or not path.is_file():
        return
    path.unlink()
    # Drop the now-empty per-source directory.
    if path.parent != root and not any(path.parent.iterdir()):
        path.parent.rmdir()
