"""Command line interface for vaultstats."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from vaultstats.config import DISPLAY_ORDER, VAULT_ENV_VAR, AppConfig
from vaultstats.index.collector import MetricsCollector
from vaultstats.index.metrics import VaultMetrics
from vaultstats.ingestion.markdown_parser import MetadataCache
from vaultstats.ingestion.vault import FileSystemVault
from vaultstats.utils.format import format_metrics
from vaultstats.utils.text import markdown_tokenize
from vaultstats.web.app import app as web_app


console = Console()
app = typer.Typer(help="vaultstats - live statistics for a vault of notes")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _resolve_vault(path: Path) -> Path:
    resolved = AppConfig(vault_path=path).resolve_vault_path(Path.cwd())
    if not resolved.is_dir():
        raise typer.BadParameter(f"Vault directory not found: {resolved}")
    return resolved


def _build_collector(config: AppConfig, root: Path) -> MetricsCollector:
    vault = FileSystemVault(root, include_hidden=config.include_hidden)
    metadata_cache = MetadataCache(vault, note_extensions=config.note_extensions)
    return MetricsCollector(
        vault,
        metadata_cache,
        interval=config.interval,
        note_extensions=config.note_extensions,
    )


async def _collect_once(collector: MetricsCollector) -> None:
    collector.start()
    try:
        await collector.process_backlog()
    finally:
        await collector.stop()
        collector.metadata_cache.close()


def _render_line(metrics: VaultMetrics, fields: List[str]) -> str:
    formatted = format_metrics(metrics.snapshot())
    return " | ".join(formatted[name] for name in fields)


@app.command()
def scan(
    vault: Path = typer.Argument(Path("."), help="Vault directory to scan."),
    documents: bool = typer.Option(False, "--documents", "-d", help="List per-document metrics"),
    note_ext: List[str] = typer.Option(["md"], "--note-ext", help="Extensions counted as notes"),
    include_hidden: bool = typer.Option(False, help="Include dot files and directories"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Compute the statistics of a vault once and print them."""
    _setup_logging(verbose)
    root = _resolve_vault(vault)
    config = AppConfig(vault_path=root, note_extensions=tuple(note_ext), include_hidden=include_hidden)
    collector = _build_collector(config, root)

    console.print(f"Scanning [bold]{root}[/bold]...")
    asyncio.run(_collect_once(collector))

    totals = collector.metrics.snapshot()
    formatted = format_metrics(totals)
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Statistic")
    table.add_column("Value", justify="right")
    for name in DISPLAY_ORDER:
        table.add_row(name, formatted[name])
    console.print(table)

    if documents:
        doc_table = Table(show_header=True, header_style="bold magenta")
        doc_table.add_column("Document")
        doc_table.add_column("Type")
        doc_table.add_column("Words", justify="right")
        doc_table.add_column("Links", justify="right")
        doc_table.add_column("Size", justify="right")
        for path, metrics in sorted(collector.documents().items()):
            kind = "note" if metrics.notes else "attachment"
            doc_table.add_row(path, kind, str(metrics.words), str(metrics.links), str(metrics.size))
        console.print(doc_table)


@app.command()
def watch(
    vault: Path = typer.Argument(Path("."), help="Vault directory to watch."),
    interval: float = typer.Option(AppConfig().interval, help="Seconds between backlog drains"),
    poll_interval: float = typer.Option(AppConfig().poll_interval, help="Seconds between file system polls"),
    field: List[str] = typer.Option([], "--field", "-f", help="Statistic to display (repeatable)"),
    duration: float = typer.Option(0.0, help="Stop after this many seconds (0 runs until interrupted)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Keep the statistics of a vault up to date and print them on change."""
    _setup_logging(verbose)
    unknown = [name for name in field if name not in DISPLAY_ORDER]
    if unknown:
        raise typer.BadParameter(f"Unknown statistic(s): {', '.join(unknown)}")

    root = _resolve_vault(vault)
    config = AppConfig(vault_path=root, interval=interval, poll_interval=poll_interval)
    if field:
        config.display_individual_items = True
        for name in field:
            setattr(config, f"show_{name}", True)
    fields = config.visible_fields()

    collector = _build_collector(config, root)
    console.print(f"Watching [bold]{root}[/bold] (Ctrl+C to stop)...")
    try:
        asyncio.run(_watch(collector, config, fields, duration))
    except KeyboardInterrupt:
        console.print("Stopped.")


async def _watch(
    collector: MetricsCollector, config: AppConfig, fields: List[str], duration: float
) -> None:
    loop = asyncio.get_running_loop()
    last_line: Optional[str] = None
    scheduled = False

    def render() -> None:
        nonlocal last_line, scheduled
        scheduled = False
        if collector.backlog:
            return
        line = _render_line(collector.metrics, fields)
        if line != last_line:
            last_line = line
            console.print(line)

    # dec and inc each notify; render once per loop turn.
    def refresh(metrics: VaultMetrics) -> None:
        nonlocal scheduled
        if not scheduled:
            scheduled = True
            loop.call_soon(render)

    await collector.vault.scan()
    collector.start()
    collector.metrics.on_updated(refresh)
    poller = asyncio.create_task(collector.vault.watch(config.poll_interval))
    try:
        await collector.process_backlog()
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        poller.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poller
        await collector.stop()
        collector.metadata_cache.close()


@app.command()
def tokenize(
    text: str = typer.Argument(..., help="Markdown text to tokenize"),
) -> None:
    """Print the word tokens of a piece of markdown prose."""
    tokens = markdown_tokenize(text)
    for token in tokens:
        console.print(token)
    console.print(f"[bold]{len(tokens)}[/bold] words")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    vault: Path = typer.Option(None, "--vault", help="Vault directory"),
) -> None:
    """Serve the live statistics as a JSON API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    if vault is not None:
        os.environ[VAULT_ENV_VAR] = str(_resolve_vault(vault))

    console.print(f"Starting web interface on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
