"""quarry sources — register and list tenant knowledge sources.

Usage:
  quarry sources add --tenant acme --url https://example.com/faq
  quarry sources add --tenant acme --file handbook.pdf --tag hr
  quarry sources add --tenant acme --text "..." --name "Returns policy"
  quarry sources list --tenant acme
"""

from __future__ import annotations

import shutil
import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cli_config, open_db, resolve_db
from quarry.cli.errors import (
    err_bad_meta,
    err_invalid_url,
    err_source_spec,
    err_ssrf_blocked,
    err_unsupported_file,
)
from quarry.db.models import KnowledgeSource, SourceKind
from quarry.db.repository import Repository
from quarry.errors import FetchError, SsrfError
from quarry.ingest.web import WebFetcher

sources_app = typer.Typer(help="Register and list knowledge sources.", add_completion=False)

_TEXT_EXTS = {".txt", ".text", ".md", ".csv", ".log"}
_ARTICLE_NAME_CHARS = 60


@sources_app.command("add")
def add_cmd(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Owning tenant id.")],
    url: Annotated[str | None, typer.Option("--url", help="Web page to ingest.")] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="PDF or text file (copied into storage.root)."),
    ] = None,
    text: Annotated[str | None, typer.Option("--text", help="Inline article text.")] = None,
    name: Annotated[str | None, typer.Option("--name", help="Display name.")] = None,
    tag: Annotated[
        list[str] | None, typer.Option("--tag", help="Category tag (repeatable).")
    ] = None,
    meta: Annotated[
        list[str] | None, typer.Option("--meta", help="Custom metadata KEY=VALUE (repeatable).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Register a source for a tenant. Run `quarry ingest` afterwards."""
    given = sum(x is not None for x in (url, file, text))
    if given != 1:
        console.print(err_source_spec(given))
        raise typer.Exit(1)

    custom: dict[str, str] = {}
    for item in meta or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            console.print(err_bad_meta(item))
            raise typer.Exit(1)
        custom[key.strip()] = value

    if url is not None:
        _check_url(url)

    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg), must_exist=False)
    repo = Repository(conn)
    source_id = str(uuid.uuid4())

    try:
        if url is not None:
            existing = repo.get_source_by_location(tenant, url)
            if existing is not None:
                console.print(f"[dim]↷ Already registered:[/] {existing.id}")
                raise typer.Exit(0)
            source = KnowledgeSource(
                id=source_id, tenant_id=tenant, kind=SourceKind.URL, name=name or url, location=url
            )
        elif file is not None:
            source = _file_source(source_id, tenant, file, name, Path(cfg.storage.root))
        else:
            body = text or ""
            source = KnowledgeSource(
                id=source_id,
                tenant_id=tenant,
                kind=SourceKind.ARTICLE,
                name=name or (" ".join(body.split())[:_ARTICLE_NAME_CHARS] or "Untitled article"),
                content=body,
                character_count=len(body),
            )
        source.category_tags = list(tag or [])
        source.custom_metadata = custom
        repo.add_source(source)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Registered {source.kind.value} source [bold]{source.id}[/]")
    console.print(f"  Next:  quarry ingest --tenant {tenant} --source {source.id}")


def _check_url(url: str) -> None:
    """Reject bad schemes and private addresses; an unresolvable host only warns."""
    try:
        WebFetcher.validate_scheme(url)
        WebFetcher.check_ssrf(url)
    except SsrfError:
        console.print(err_ssrf_blocked(url))
        raise typer.Exit(1)
    except FetchError as exc:
        console.print(f"[yellow]⚠[/] {exc}. Registering anyway; ingestion will retry.")
    except ValueError as exc:
        console.print(err_invalid_url(url, str(exc)))
        raise typer.Exit(1)


def _file_source(
    source_id: str, tenant: str, file: Path, name: str | None, storage_root: Path
) -> KnowledgeSource:
    if not file.is_file():
        console.print(f"[red]Error:[/] File not found: '{file}'")
        raise typer.Exit(1)
    suffix = file.suffix.lower()
    if suffix == ".pdf":
        kind = SourceKind.PDF
    elif suffix in _TEXT_EXTS:
        kind = SourceKind.TXT
    else:
        console.print(err_unsupported_file(str(file)))
        raise typer.Exit(1)

    location = f"{tenant}/{source_id}/{file.name}"
    target = storage_root / location
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(file, target)
    return KnowledgeSource(
        id=source_id, tenant_id=tenant, kind=kind, name=name or file.name, location=location
    )


@sources_app.command("list")
def list_cmd(
    tenant: Annotated[
        str | None, typer.Option("--tenant", "-t", help="Only this tenant's sources.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """List registered sources with their ingestion and check status."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    repo = Repository(conn)
    try:
        sources = repo.list_sources(tenant)
        if not sources:
            console.print("[dim]No sources registered.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("ID", style="dim")
        table.add_column("Tenant")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Chunks", justify="right")
        table.add_column("Last check")
        for s in sources:
            table.add_row(
                s.id,
                s.tenant_id,
                s.kind.value,
                s.name,
                s.status.value,
                str(repo.count_chunks_by_source(s.tenant_id, s.id)),
                s.last_check_status or "—",
            )
        console.print(table)
    finally:
        conn.close()
