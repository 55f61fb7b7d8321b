"""quarry status command.

Shows the database, the knowledge base per tenant, and the retrieval
settings in effect (reranker on/off, cache backend).
"""

from __future__ import annotations

import sqlite3
from collections import Counter
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.config import QuarryConfig
from quarry.db.models import KnowledgeSource
from quarry.db.repository import Repository
from quarry.db.vectors import list_vec_tables


def status_cmd(
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Show knowledge-base status per tenant and the active retrieval settings."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)

    _show_project_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  quarry sources add --tenant <tenant> --url <url>",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db_path)
    try:
        _show_knowledge_panel(conn, Repository(conn))
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db: Path, cfg: QuarryConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    reranker = f"[green]on[/] ({cfg.reranker.url})" if cfg.reranker.enabled else "[dim]off[/]"
    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Reranker:   {reranker}",
        f"Cache:      {cfg.cache.backend} (ttl {cfg.cache.ttl_seconds}s)",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Quarry[/]", expand=False))


def _show_knowledge_panel(conn: sqlite3.Connection, repo: Repository) -> None:
    sources = repo.list_sources()
    vec_tables = list_vec_tables(conn)

    header = (
        f"Sources: [bold]{len(sources)}[/]  |  "
        f"Chunks: [bold]{repo.count_chunks():,}[/]  |  "
        f"Vec tables: [bold]{len(vec_tables)}[/]"
    )
    if not sources:
        console.print(
            Panel(f"{header}\n[dim]No sources registered yet.[/]", title="[bold]Knowledge Base[/]", expand=False)
        )
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Tenant")
    table.add_column("Sources", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Status")
    table.add_column("Last ingest", style="dim")

    by_tenant: dict[str, list[KnowledgeSource]] = {}
    for s in sources:
        by_tenant.setdefault(s.tenant_id, []).append(s)
    for tenant, items in sorted(by_tenant.items()):
        counts = Counter(s.status.value for s in items)
        last = max((s.last_ingest_at for s in items if s.last_ingest_at), default=None)
        table.add_row(
            tenant,
            str(len(items)),
            f"{repo.count_chunks(tenant):,}",
            ", ".join(f"{k} {v}" for k, v in sorted(counts.items())),
            last or "—",
        )

    console.print(header)
    console.print(Panel(table, title="[bold]Knowledge Base[/]", expand=False))
