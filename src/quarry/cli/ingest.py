"""quarry ingest — chunk, embed and store registered sources.

Without --source, every source of the tenant that still needs work is
ingested: status uploaded, pending_reingest or failed_ingest.

Usage:
  quarry ingest --tenant acme
  quarry ingest --tenant acme --source 3f2c... --source 9a1b...
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.cli.errors import err_no_api_key, err_source_not_found, warn_stale_cache
from quarry.db.models import SourceStatus
from quarry.db.repository import Repository
from quarry.ingest.pipeline import IngestionService
from quarry.rag.llm_client import provider_of, validate_api_key

_NEEDS_INGEST = {SourceStatus.UPLOADED, SourceStatus.PENDING_REINGEST, SourceStatus.FAILED_INGEST}


def ingest_cmd(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant id.")],
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="Source id (repeatable). Default: all pending."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging.")] = False,
) -> None:
    """Ingest one or more sources into the tenant's knowledge base."""
    cfg = load_cli_config(verbose)

    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(cfg.embedding.model)))
        raise typer.Exit(1)

    conn = open_db(resolve_db(db, cfg))
    repo = Repository(conn)
    try:
        if source:
            ids = []
            for source_id in source:
                if repo.get_source(tenant, source_id) is None:
                    console.print(err_source_not_found(tenant, source_id))
                    raise typer.Exit(1)
                ids.append(source_id)
        else:
            ids = [s.id for s in repo.list_sources(tenant) if s.status in _NEEDS_INGEST]

        if not ids:
            console.print("[yellow]Nothing to ingest.[/]")
            raise typer.Exit(0)

        service = IngestionService.from_config(cfg, repo)
        results = {}
        for source_id in ids:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
                console=console,
            ) as prog:
                prog.add_task(f"Ingesting {source_id}…", total=None)
                results[source_id] = service.ingest(tenant, source_id)
    finally:
        conn.close()

    if as_json:
        console.print_json(json.dumps({k: r.to_dict() for k, r in results.items()}))
    else:
        for source_id, result in results.items():
            if result.success:
                console.print(
                    f"[green]✓[/] {source_id}: {result.chunks_stored} chunks, "
                    f"{result.tokens_used} tokens"
                )
                for err in result.errors:
                    console.print(f"  [yellow]⚠[/] {err}")
            else:
                console.print(f"[red]✗[/] {source_id}: {result.error}")

    if cfg.cache.backend == "sqlite" and any(r.success for r in results.values()):
        console.print(warn_stale_cache())
    if not all(r.success for r in results.values()):
        raise typer.Exit(1)
