"""quarry monitor — check URL sources for accessibility and content changes.

Sources whose content changed are flipped to pending_reingest; pass
--reingest to ingest them straight away.

Usage:
  quarry monitor
  quarry monitor --tenant acme --days 0 --reingest
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.db.repository import Repository
from quarry.ingest.pipeline import IngestionService
from quarry.ingest.web import WebFetcher
from quarry.monitor import SourceMonitor


def monitor_cmd(
    tenant: Annotated[
        str | None, typer.Option("--tenant", "-t", help="Only this tenant's sources.")
    ] = None,
    days: Annotated[
        int | None,
        typer.Option("--days", help="Re-check sources not checked for this many days."),
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", help="Check at most N sources.")] = None,
    reingest: Annotated[
        bool, typer.Option("--reingest", help="Ingest changed sources immediately.")
    ] = False,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging.")] = False,
) -> None:
    """Check due URL sources and flag changed ones for re-ingestion."""
    cfg = load_cli_config(verbose)
    conn = open_db(resolve_db(db, cfg))
    repo = Repository(conn)
    try:
        monitor = SourceMonitor(
            repo,
            WebFetcher(user_agent=cfg.monitor.user_agent, timeout=cfg.monitor.timeout),
            recheck_days=cfg.monitor.recheck_days,
        )
        results = monitor.sweep(tenant_id=tenant, older_than_days=days, limit=limit)
        if not results:
            console.print("[dim]No sources due for a check.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Tenant")
        table.add_column("Source", style="dim")
        table.add_column("Result")
        for r in results:
            style = "green" if r.status == "OK" else "yellow" if r.ok else "red"
            table.add_row(r.tenant_id, r.source_id, f"[{style}]{r.status}[/]")
        console.print(table)

        changed = [r for r in results if r.changed]
        console.print(
            f"\n{len(results)} checked  |  {len(changed)} changed  |  "
            f"{sum(not r.ok for r in results)} errors"
        )
        if changed and reingest:
            service = IngestionService.from_config(cfg, repo)
            for r in changed:
                result = service.ingest(r.tenant_id, r.source_id)
                mark = "[green]✓[/]" if result.success else "[red]✗[/]"
                console.print(f"{mark} re-ingested {r.source_id}: {result.chunks_stored} chunks")
        elif changed:
            console.print("  Run:  quarry ingest --tenant <tenant>  to refresh changed sources")
    finally:
        conn.close()
