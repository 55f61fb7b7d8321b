"""Quarry rich error messages with actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*."""
    env_map = {
        "openai": "OPENAI_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".quarry.db") -> str:
    """No knowledge-base database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  quarry sources add --tenant <tenant> --url <url>"
    )


def err_source_not_found(tenant: str, source_id: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not registered for tenant '{tenant}'.\n"
        f"  Run:  quarry sources list --tenant {tenant}"
    )


def err_source_spec(count: int) -> str:
    """`sources add` needs exactly one of --url / --file / --text."""
    return (
        f"[red]Error:[/] Expected exactly one of --url, --file or --text (got {count}).\n"
        "  Example:  quarry sources add --tenant acme --url https://example.com/faq"
    )


def err_unsupported_file(path: str) -> str:
    return (
        f"[red]Error:[/] Unsupported file type: '{path}'.\n"
        "  Supported:  .pdf, .txt, .text, .md, .csv, .log"
    )


def err_bad_meta(item: str) -> str:
    return (
        f"[red]Error:[/] Invalid --meta value '{item}'.\n"
        "  Use KEY=VALUE, e.g.  --meta department=support"
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL."
    )


def err_invalid_url(url: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Invalid URL '{url}': {reason}\n"
        "  Example:  quarry sources add --tenant acme --url https://example.com/faq"
    )


def warn_stale_cache() -> str:
    """Shown after removals and re-ingestion when a persistent query cache is in use."""
    return (
        "[yellow]⚠[/] Cached search results may still reference old chunks.\n"
        "  They expire after cache.ttl_seconds; clear them now with:\n"
        "    quarry search --clear-cache"
    )
