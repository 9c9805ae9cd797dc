"""Typer CLI entrypoint for botrange."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigLocator, ConfigRepository, EngineConfig, SourceDescriptor
from .errors import ConfigValidationError, SecurityError
from .logging_conf import configure_logging
from .orchestrator import RunReport, run_sources

app = typer.Typer(
    help="Aggregate IP ranges of known-good bots into one provenance-tagged list.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    verbose: bool = False


def build_state(verbose: bool, home: Path | None = None) -> AppState:
    locator = ConfigLocator(project_root=home)
    configure_logging(verbose=verbose, log_dir=locator.logs_dir)
    return AppState(repository=ConfigRepository(locator), verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _load(state: AppState, sources_file: Optional[Path]) -> tuple[EngineConfig, list[SourceDescriptor]]:
    try:
        config = state.repository.load_engine_config()
        sources = state.repository.load_sources(sources_file)
    except (ConfigValidationError, SecurityError) as exc:
        console.print(f"Invalid configuration: {exc}", style="red")
        raise typer.Exit(code=2) from exc
    return config, sources


def _describe_target(source: SourceDescriptor) -> str:
    if source.asn:
        return ", ".join(source.asn)
    if source.file:
        return source.file
    return ", ".join(source.endpoints)


def _render_sources_table(sources: Sequence[SourceDescriptor]) -> Table:
    table = Table(title=f"Sources · {len(sources)}", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Id", style="dim")
    table.add_column("Shape", style="magenta")
    table.add_column("Target", style="green", overflow="fold")
    for source in sources:
        table.add_row(source.name, source.id, source.shape.value, _describe_target(source))
    return table


def _render_report_table(report: RunReport) -> Table:
    table = Table(title="Run summary", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Addresses", justify="right")
    table.add_column("Invalid", justify="right", style="dim")
    table.add_column("Private", justify="right", style="dim")
    table.add_column("Status", overflow="fold")
    for result in report.results:
        status = "ok" if result.ok else f"[red]failed: {result.error}[/red]"
        table.add_row(
            result.descriptor.name,
            str(len(result.addresses)),
            str(result.dropped_invalid),
            str(result.dropped_private),
            status,
        )
    return table


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    home: Optional[Path] = typer.Option(
        None, "--home", help="Project root holding config/ and custom/ (defaults to cwd)."
    ),
) -> None:
    ctx.obj = build_state(verbose, home)


@app.command("sources", help="List configured sources.")
def sources_command(
    ctx: typer.Context,
    sources_file: Optional[Path] = typer.Option(None, "--sources", help="Alternate source list."),
) -> None:
    state = _get_state(ctx)
    _, sources = _load(state, sources_file)
    console.print(_render_sources_table(sources))


@app.command("validate", help="Validate the engine configuration and source list.")
def validate_command(
    ctx: typer.Context,
    sources_file: Optional[Path] = typer.Option(None, "--sources", help="Alternate source list."),
) -> None:
    state = _get_state(ctx)
    _, sources = _load(state, sources_file)
    console.print(_render_sources_table(sources))
    console.print(f"{len(sources)} sources valid.", style="green")


@app.command("run", help="Fetch every source and merge the registry.")
def run_command(
    ctx: typer.Context,
    sources_file: Optional[Path] = typer.Option(None, "--sources", help="Alternate source list."),
    only: Optional[list[str]] = typer.Option(None, "--only", help="Run only these source ids."),
    as_json: bool = typer.Option(False, "--json", help="Print the registry as JSON."),
) -> None:
    state = _get_state(ctx)
    config, sources = _load(state, sources_file)
    if only:
        wanted = set(only)
        unknown = wanted - {source.id for source in sources}
        if unknown:
            console.print(f"Unknown source ids: {', '.join(sorted(unknown))}", style="red")
            raise typer.Exit(code=2)
        sources = [source for source in sources if source.id in wanted]
    report = asyncio.run(run_sources(config, sources))
    if as_json:
        typer.echo(json.dumps(report.registry.as_output(), indent=2, ensure_ascii=False))
    else:
        console.print(_render_report_table(report))
        summary = report.summary()
        console.print(
            f"{summary['addresses']} unique addresses from "
            f"{summary['succeeded']}/{summary['sources']} sources.",
            style="green" if not summary["failed"] else "yellow",
        )
    if not report.succeeded and report.results:
        raise typer.Exit(code=1)


__all__ = ["AppState", "app", "build_state"]
