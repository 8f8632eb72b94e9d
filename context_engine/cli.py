"""CLI entry point for the context engine."""

import json
import logging
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import Config, ConfigurationError, resolve_workspace_root
from .core.models import Hit
from .embedding.ollama import OllamaManager, ollama_status
from .engine import ContextEngine, get_engine
from .search.blended import RANKING_MODES

console = Console()


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def _engine(ctx: click.Context) -> ContextEngine:
    try:
        return get_engine(ctx.obj.get("root"))
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _print_hits(hits: list[Hit], title: str) -> None:
    if not hits:
        console.print("[yellow]No results found[/yellow]")
        return
    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Location", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Preview", style="dim")
    for i, hit in enumerate(hits, 1):
        location = hit.uri
        if "start_line" in hit.meta:
            location = f"{hit.uri}:{hit.meta['start_line']}-{hit.meta.get('end_line', hit.meta['start_line'])}"
        preview = hit.snippet[:80].replace("\n", " ")
        table.add_row(
            str(i),
            location,
            hit.meta.get("origin", hit.source),
            f"{hit.score:.3f}",
            preview + "..." if len(preview) == 80 else preview,
        )
    console.print(table)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--root", type=click.Path(file_okay=False), default=None, help="Workspace root")
@click.pass_context
def main(ctx: click.Context, verbose: bool, root: str | None):
    """ctx - workspace context engine

    Incremental indexing, hybrid code search and behavior memory.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


@main.command()
@click.pass_context
def init(ctx: click.Context):
    """Write the default configuration for the workspace."""
    try:
        root = resolve_workspace_root(ctx.obj.get("root"))
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    config_path = Config.get_default_config_path(root)
    if config_path.exists():
        console.print(f"[yellow]Already initialized at {config_path.parent}[/yellow]")
        return
    Config().save(config_path)
    console.print(f"[green]✓[/green] Initialized context engine at {config_path.parent}")
    console.print("[dim]Next: ctx index[/dim]")


@main.command()
@click.option("--force", is_flag=True, help="Reindex every file")
@click.option("--quick", is_flag=True, help="Bounded run; remaining files are reported as pending")
@click.option("--include", multiple=True, type=click.Path(), help="Only index these paths")
@click.pass_context
def index(ctx: click.Context, force: bool, quick: bool, include: tuple[str, ...]):
    """Index the workspace (incremental unless --force)."""
    engine = _engine(ctx)
    console.print(f"[cyan]Indexing {engine.root}...[/cyan]")

    with Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
    ) as progress:
        task = progress.add_task("Scanning for changes...", total=None)
        result = engine.index(quick=quick, force=force, include=list(include) or None, background=False)
        # Without --quick, drain deferred files in the foreground
        while result.ok and result.pending and not quick:
            progress.update(task, description=f"Indexing {len(result.pending)} deferred files...")
            result = engine.index(include=result.pending, background=False)
        progress.update(task, completed=True)

    if not result.ok:
        console.print(f"[red]Error during indexing: {result.error}[/red]")
        sys.exit(1)
    if result.skipped:
        console.print(f"[dim]Index is fresh ({result.reason}); nothing to do[/dim]")

    console.print("\n[green]✓ Indexing complete[/green]")
    console.print(f"  Files: {result.files}")
    console.print(f"  Chunks: {result.chunks} ({result.embeddings} embedded)")
    console.print(f"  Changed: {len(result.changed)}, removed: {len(result.removed)}")
    console.print(f"  Storage: {result.storage_mb:.2f} MB")
    console.print(f"  Duration: {result.took_ms} ms")
    if result.pending:
        console.print(f"  [yellow]Pending: {len(result.pending)} files (run again to continue)[/yellow]")

    if result.errors:
        console.print("\n[yellow]Warnings:[/yellow]")
        for error in result.errors[:5]:
            console.print(f"  {error}")
        if len(result.errors) > 5:
            console.print(f"  ... and {len(result.errors) - 5} more")


@main.command()
@click.argument("query")
@click.option("-k", "--limit", type=int, default=None, help="Number of results")
@click.option("--blend", is_flag=True, help="Blend in imported evidence")
@click.option("--mode", type=click.Choice(RANKING_MODES), default=None, help="Ranking mode for --blend")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None, blend: bool, mode: str | None, as_json: bool):
    """Search the workspace."""
    engine = _engine(ctx)
    if blend or mode:
        hits = engine.blended_search(query, limit, mode)
    else:
        hits = engine.search(query, limit)

    if as_json:
        click.echo(json.dumps({"query": query, "results": [h.to_dict() for h in hits]}, indent=2))
        return
    _print_hits(hits, f"Search Results: {query}")


@main.command()
@click.argument("query")
@click.option("-k", "--limit", type=int, default=8, help="Number of results")
@click.pass_context
def quick(ctx: click.Context, query: str, limit: int):
    """Lexical scan that needs no index."""
    engine = _engine(ctx)
    _print_hits(engine.quick_scan(query, limit), f"Quick Scan: {query}")


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show index statistics."""
    engine = _engine(ctx)
    s = engine.stats()
    memory = engine.memory.data

    table = Table(title="Index Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files", str(s.files))
    table.add_row("Chunks", str(s.chunks))
    table.add_row("Embeddings", str(s.embeddings))
    table.add_row("Revision", s.revision_head or "-")
    table.add_row("Indexed at", s.indexed_at or "-")
    table.add_row("Updated at", s.updated_at or "-")
    table.add_row("Storage", f"{s.storage_mb:.2f} MB")
    table.add_row("Compression", s.compression)
    table.add_row("Embedding provider", engine.config.embedding.provider)
    table.add_row("Architecture patterns", str(len(memory.architecture)))
    table.add_row("Naming style", memory.style.naming_preference if memory.style else "-")
    table.add_row("Evidence items", str(len(engine.evidence.get_all())))
    console.print(table)


@main.command()
@click.argument("urls", nargs=-1, required=True)
@click.option("--tag", "tags", multiple=True, help="Tag stored with every chunk")
@click.pass_context
def ingest(ctx: click.Context, urls: tuple[str, ...], tags: tuple[str, ...]):
    """Fetch web pages and add them to the index."""
    engine = _engine(ctx)
    with Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
    ) as progress:
        task = progress.add_task(f"Ingesting {len(urls)} URLs...", total=None)
        result = engine.ingest_urls(list(urls), list(tags))
        progress.update(task, completed=True)

    console.print(f"[green]✓[/green] Ingested {result['ingested']} pages ({result['chunks']} chunks)")
    for error in result["errors"]:
        console.print(f"  [red]{error}[/red]")
    if not result["ok"]:
        sys.exit(1)


@main.group()
def evidence():
    """Record and query evidence."""


@evidence.command("add")
@click.argument("source")
@click.argument("data")
@click.option("--title", default=None)
@click.option("--uri", default=None)
@click.option("--group", default=None)
@click.option("--tag", "tags", multiple=True)
@click.pass_context
def evidence_add(
    ctx: click.Context,
    source: str,
    data: str,
    title: str | None,
    uri: str | None,
    group: str | None,
    tags: tuple[str, ...],
):
    """Add an evidence item; DATA is a JSON document."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: DATA is not valid JSON: {e}[/red]")
        sys.exit(1)
    engine = _engine(ctx)
    item_id = engine.evidence.add(source, payload, title=title, uri=uri, group=group, tags=list(tags) or None)
    console.print(f"[green]✓[/green] {item_id}")


@evidence.command("find")
@click.option("--source", default=None)
@click.option("--group", default=None)
@click.option("--tag", default=None)
@click.option("--text", default=None)
@click.pass_context
def evidence_find(ctx: click.Context, source: str | None, group: str | None, tag: str | None, text: str | None):
    """Find evidence items."""
    engine = _engine(ctx)
    items = engine.evidence.find(source=source, group=group, tag=tag, text=text)
    if not items:
        console.print("[yellow]No evidence found[/yellow]")
        return
    table = Table(title="Evidence")
    table.add_column("ID", style="cyan")
    table.add_column("Source")
    table.add_column("Title")
    table.add_column("Data", style="dim")
    for item in sorted(items, key=lambda i: i.timestamp):
        table.add_row(item.id, item.source, item.title or "", item.data_text()[:60])
    console.print(table)


@main.group()
def ollama():
    """Manage the local Ollama embedding server."""


@ollama.command("status")
@click.pass_context
def ollama_status_cmd(ctx: click.Context):
    """Show whether Ollama is reachable and which models it serves."""
    engine = _engine(ctx)
    status = ollama_status(engine.config.embedding.ollama_base_url)
    table = Table(title="Ollama")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in status.items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)


@ollama.command("start")
@click.pass_context
def ollama_start(ctx: click.Context):
    """Start Ollama if needed and wait until it answers."""
    engine = _engine(ctx)
    emb = engine.config.embedding
    manager = OllamaManager(emb.ollama_base_url, emb.ollama_start_timeout)
    with Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
    ) as progress:
        task = progress.add_task("Waiting for Ollama...", total=None)
        try:
            manager.ensure_running()
        except RuntimeError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
        progress.update(task, completed=True)
    console.print(f"[green]✓[/green] Ollama is running at {emb.ollama_base_url}")


@main.command()
@click.argument("name")
@click.option("--callers", is_flag=True, help="Also list call sites")
@click.pass_context
def symbol(ctx: click.Context, name: str, callers: bool):
    """Find where a symbol is defined."""
    engine = _engine(ctx)
    found = engine.find_symbol(name)
    if found is None:
        console.print(f"[yellow]Symbol not found: {name}[/yellow]")
        sys.exit(1)
    exported = " [dim](exported)[/dim]" if found.is_exported else ""
    console.print(f"[cyan]{found.file}:{found.line}[/cyan] {found.type} [bold]{found.name}[/bold]{exported}")

    if callers:
        sites = engine.find_callers(name)
        if not sites:
            console.print("[dim]No call sites found[/dim]")
            return
        table = Table(title=f"Callers of {name}")
        table.add_column("Location", style="cyan")
        table.add_column("Line", style="dim")
        for site in sites:
            table.add_row(f"{site.file}:{site.line}", site.context[:100])
        console.print(table)


@main.command()
@click.argument("file")
@click.pass_context
def neighbors(ctx: click.Context, file: str):
    """Show a file's symbols, imports and importers."""
    engine = _engine(ctx)
    hood = engine.neighborhood(Path(file).as_posix())
    console.print(f"[bold]{hood.file}[/bold]")
    for s in hood.symbols:
        console.print(f"  [cyan]{s.line:>5}[/cyan] {s.type} {s.name}")
    console.print(f"[dim]Imports:[/dim] {', '.join(hood.imports) or '-'}")
    console.print(f"[dim]Imported by:[/dim] {', '.join(hood.imported_by) or '-'}")


@main.command()
@click.option("--debounce", type=float, default=1.0, help="Seconds of quiet before reindexing")
@click.pass_context
def watch(ctx: click.Context, debounce: float):
    """Reindex files as they change (Ctrl+C to stop)."""
    engine = _engine(ctx)
    engine.ensure_indexed()
    engine.start_watcher(debounce=debounce)
    console.print(f"[green]✓[/green] Watching {engine.root} [dim](Ctrl+C to stop)[/dim]")
    try:
        while engine.watcher_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop_watcher()
    console.print("[dim]Watcher stopped[/dim]")


@main.command()
@click.confirmation_option(prompt="Delete the index for this workspace?")
@click.pass_context
def reset(ctx: click.Context):
    """Delete the persisted index (memory and evidence are kept)."""
    engine = _engine(ctx)
    engine.reset()
    console.print(f"[green]✓[/green] Index cleared at {Path(engine.store.context_dir)}")


if __name__ == "__main__":
    main()
