"""quarry search — hybrid retrieval against a tenant's knowledge base.

Usage:
  quarry search "how do I return an item" --tenant acme
  quarry search "opening hours" --tenant acme -k 3 --json
  quarry search --clear-cache
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.db.repository import Repository
from quarry.rag.retriever import Retriever

_PREVIEW_CHARS = 90


def search_cmd(
    query: Annotated[str | None, typer.Argument(help="Free-text query.")] = None,
    tenant: Annotated[str | None, typer.Option("--tenant", "-t", help="Tenant id.")] = None,
    k: Annotated[int | None, typer.Option("--top-k", "-k", help="Number of results.")] = None,
    conversation: Annotated[
        str | None, typer.Option("--conversation", help="Conversation id (cache scope).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    clear_cache: Annotated[
        bool, typer.Option("--clear-cache", help="Drop all persisted cached results first.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging.")] = False,
) -> None:
    """Search a tenant's knowledge base (vector + lexical, optional rerank)."""
    cfg = load_cli_config(verbose)
    conn = open_db(resolve_db(db, cfg))
    repo = Repository(conn)
    try:
        if clear_cache:
            removed = repo.cache_purge()
            console.print(f"[green]✓[/] Cleared {removed} cached result(s)")
            if query is None:
                return

        if query is None or tenant is None:
            console.print("[red]Error:[/] A query and --tenant are required.")
            console.print('  Example:  quarry search "opening hours" --tenant acme')
            raise typer.Exit(1)

        retriever = Retriever.from_config(cfg, repo)
        try:
            results = retriever.search(tenant, query, conversation_id=conversation, k=k)
        finally:
            retriever.close()
    finally:
        conn.close()

    if as_json:
        console.print_json(json.dumps([c.to_dict() for c in results], ensure_ascii=False))
        return
    if not results:
        console.print("[yellow]No matching chunks.[/]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Content")
    for i, c in enumerate(results, 1):
        score = c.rerank_score if c.rerank_score is not None else c.hybrid_score
        preview = " ".join(c.content.split())
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        table.add_row(str(i), f"{score:.3f}", str(c.metadata.get("source_name", "")), preview)
    console.print(table)
