"""CLI interface for lanegraph using Typer framework."""

import json as jsonlib
import logging
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from lanegraph import __description__, __version__
from lanegraph.config import (
    CellWidthMode,
    EdgeStyle,
    LanegraphConfig,
    LogLevel,
    OrderMode,
    ProtocolChoice,
    apply_cli_overrides,
    load_config,
)
from lanegraph.diagnostics import ErrorCollector
from lanegraph.errors import ConfigError, LanegraphError
from lanegraph.graph import (
    Graph,
    GraphImageManager,
    LayoutEngine,
    RenderCache,
    RenderOptions,
    TerminalWriter,
    Transport,
    resolve_cell_width,
)
from lanegraph.graph.layout import Layout, LayoutRow
from lanegraph.graph.model import Commit, RefKind
from lanegraph.providers import load_commit_file, load_repository

app = typer.Typer(
    name="lanegraph",
    help=__description__,
    add_completion=False,
    rich_markup_mode="rich"
)
cache_app = typer.Typer(help="Inspect or clear the persistent render cache")
app.add_typer(cache_app, name="cache")

console = Console()
err_console = Console(stderr=True)

# Shared option types for commands that load a graph
PathArg = Annotated[Path, typer.Argument(help="Repository directory (default: current directory)")]
OrderOpt = Annotated[Optional[OrderMode], typer.Option("--order", help="Commit ordering")]
ProtocolOpt = Annotated[Optional[ProtocolChoice], typer.Option("--protocol", help="Image protocol")]
GraphWidthOpt = Annotated[Optional[CellWidthMode], typer.Option("--graph-width", help="Terminal columns per lane")]
EdgeStyleOpt = Annotated[Optional[EdgeStyle], typer.Option("--edge-style", help="Edge drawing style")]
MaxCountOpt = Annotated[Optional[int], typer.Option("--max-count", "-n", help="Limit the number of commits")]
InputOpt = Annotated[Optional[Path], typer.Option("--input", "-i", help="Read commits from a JSON commit file")]
ConfigOpt = Annotated[Optional[Path], typer.Option("--config", "-c", help="Configuration file path (default: search for .lanegraph.json)")]
LogLevelOpt = Annotated[Optional[LogLevel], typer.Option("--log-level", help="Logging level")]
PaletteOpt = Annotated[Optional[str], typer.Option("--palette", help="Comma-separated lane colors, e.g. '#e06c76,#98c379'")]
EdgeColorOpt = Annotated[Optional[str], typer.Option("--edge-color", help="Commit circle outline color")]
BackgroundColorOpt = Annotated[Optional[str], typer.Option("--background-color", help="Image background color (#rrggbb or #rrggbbaa)")]
TileRowsOpt = Annotated[Optional[int], typer.Option("--tile-rows", help="Rows rendered per image")]


def version_callback(value: bool) -> None:
    """Show version information and exit."""
    if value:
        console.print(f"lanegraph version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, help="Show version and exit")
    ] = False,
) -> None:
    """lanegraph - commit graph images for iTerm2 and kitty terminals."""


def _setup_logging(level: LogLevel) -> None:
    """Route package logs through rich on stderr."""
    package_logger = logging.getLogger("lanegraph")
    package_logger.handlers.clear()
    package_logger.addHandler(RichHandler(console=err_console, show_path=False, markup=False))
    package_logger.setLevel(LogLevel(level).to_logging_level())
    package_logger.propagate = False


def _load_settings(config_path: Optional[Path], **overrides) -> LanegraphConfig:
    if config_path is not None and not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")
    config = apply_cli_overrides(load_config(config_path), **overrides)
    _setup_logging(config.logging.level)
    return config


def _load_graph(path: Path, input_file: Optional[Path], config: LanegraphConfig) -> Graph:
    order = config.graph.order
    max_count = config.graph.max_count

    if input_file is not None:
        commits, refs = load_commit_file(input_file)
        if max_count is not None:
            commits = commits[:max_count]
    else:
        commits, refs = load_repository(path, order=order, max_count=max_count)

    return Graph.build(commits, refs, order=order)


def format_refs(graph: Graph, commit: Commit) -> str:
    """Decoration text like ``(HEAD, main, origin/main, tag: v1.0)``."""
    names = []
    for ref in graph.refs_for(commit.hash):
        if ref.kind == RefKind.TAG:
            names.append(f"tag: {ref.name}")
        else:
            names.append(ref.name)
    return f"({', '.join(names)})" if names else ""


def _row_text(graph: Graph, row: LayoutRow) -> str:
    commit = row.commit
    parts = [commit.short_hash]
    refs = format_refs(graph, commit)
    if refs:
        parts.append(refs)
    parts.append(commit.subject)
    return " ".join(parts)


def _split_palette(value: Optional[str]) -> Optional[list[str]]:
    """Split a comma-separated --palette value; validation happens in GraphConfig."""
    if value is None:
        return None
    return [color.strip() for color in value.split(",") if color.strip()]


@app.command()
def show(
    path: PathArg = Path("."),
    order: OrderOpt = None,
    protocol: ProtocolOpt = None,
    graph_width: GraphWidthOpt = None,
    edge_style: EdgeStyleOpt = None,
    palette: PaletteOpt = None,
    edge_color: EdgeColorOpt = None,
    background_color: BackgroundColorOpt = None,
    tile_rows: TileRowsOpt = None,
    preload: Annotated[Optional[bool], typer.Option("--preload/--no-preload", help="Render every row before printing")] = None,
    max_count: MaxCountOpt = None,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Do not read or write the persistent cache")] = False,
    input_file: InputOpt = None,
    config: ConfigOpt = None,
    log_level: LogLevelOpt = None,
) -> None:
    """Print the commit graph with inline images.

    Each commit line is preceded by its graph image. When stdout is not a
    terminal, only the text columns are printed.
    """
    collector = ErrorCollector("show")
    try:
        settings = _load_settings(
            config,
            order=order,
            protocol=protocol,
            cell_width=graph_width,
            edge_style=edge_style,
            palette=_split_palette(palette),
            edge_color=edge_color,
            background_color=background_color,
            tile_rows=tile_rows,
            preload=preload,
            max_count=max_count,
            cache_enabled=False if no_cache else None,
            log_level=log_level,
        )
        graph = _load_graph(path, input_file, settings)
        layout = LayoutEngine().compute(graph)

        if not len(layout):
            console.print("[dim]No commits found[/dim]")
            return

        transport = Transport.detect(settings.graph.protocol)
        writer = TerminalWriter(sys.stdout, transport)
        if not writer.images_enabled:
            for row in layout.rows:
                writer.write_text(_row_text(graph, row) + "\n")
            return

        cell_width = resolve_cell_width(settings.graph.cell_width, layout.max_lanes, console.size.width)
        options = RenderOptions.from_config(settings.graph, cell_width)

        cache_dir = settings.cache.resolve_dir() if settings.cache.enabled else None
        with RenderCache(cache_dir) as cache:
            manager = GraphImageManager(
                graph,
                layout,
                options,
                transport,
                cache,
                tile_rows=settings.graph.tile_rows,
                preload=settings.graph.preload,
                collector=collector,
            )
            _write_graph(writer, manager, graph, layout)

        if collector.has_errors():
            failed = collector.failed_ranges()
            err_console.print(f"[yellow]WARN[/yellow] {len(failed)} row range(s) failed to render")
            if cache_dir is not None:
                collector.flush_to_filesystem(cache_dir)
            raise typer.Exit(1)

    except LanegraphError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _write_graph(writer: TerminalWriter, manager: GraphImageManager, graph: Graph, layout: Layout) -> None:
    """Emit one image per tile followed by the text of the rows it covers.

    Text goes to the column right of the image; multi-row tiles move the
    cursor back up to the tile's first line before writing text.
    """
    text_column = layout.max_lanes * manager.options.cell_width.columns_per_lane + 2
    for result in manager.render_window(0, len(layout)):
        height = result.stop - result.start
        # A failed tile leaves its image columns blank
        if result.ok and writer.emit(result.data) and height > 1:
            writer.write_text(f"\x1b[{height - 1}A")
        for row in layout.row_range(result.start, result.stop):
            writer.write_text(f"\x1b[{text_column}G{_row_text(graph, row)}\n")


@app.command("layout")
def layout_command(
    path: PathArg = Path("."),
    order: OrderOpt = None,
    max_count: MaxCountOpt = None,
    input_file: InputOpt = None,
    config: ConfigOpt = None,
    log_level: LogLevelOpt = None,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: table, json")] = "table",
) -> None:
    """Print the lane layout of the commit graph without rendering images."""
    valid_formats = ["table", "json"]
    if format not in valid_formats:
        console.print(f"[red]Error:[/red] Invalid format '{format}'. Must be one of: {', '.join(valid_formats)}")
        raise typer.Exit(1)

    try:
        settings = _load_settings(config, order=order, max_count=max_count, log_level=log_level)
        graph = _load_graph(path, input_file, settings)
        layout = LayoutEngine().compute(graph)
    except LanegraphError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        _output_layout_json(layout)
    else:
        _output_layout_table(graph, layout)


def _output_layout_json(layout: Layout) -> None:
    data = {
        "maxLanes": layout.max_lanes,
        "maxConcurrent": layout.max_concurrent,
        "rows": [
            {
                "index": row.index,
                "hash": row.commit.hash,
                "lane": row.lane,
                "lanesBefore": list(row.lanes_before),
                "lanesAfter": list(row.lanes_after),
                "segments": [
                    {"kind": s.kind.value, "from": s.from_lane, "to": s.to_lane, "lane": s.lane}
                    for s in row.segments
                ],
                "boundaryParents": list(row.boundary_parents),
            }
            for row in layout.rows
        ],
    }
    # Plain print keeps the output machine readable
    print(jsonlib.dumps(data, indent=2))


def _output_layout_table(graph: Graph, layout: Layout) -> None:
    if not len(layout):
        console.print("[dim]No commits found[/dim]")
        return

    table = Table(title=f"Layout ({len(layout)} rows, {layout.max_lanes} lanes)")
    table.add_column("Row", style="dim", justify="right")
    table.add_column("Commit", style="cyan", no_wrap=True)
    table.add_column("Lane", justify="right")
    table.add_column("Edges", style="white")
    table.add_column("Subject", style="white")

    for row in layout.rows:
        edges = ", ".join(
            f"{s.kind.value} {s.from_lane}->{s.to_lane}" if not s.is_straight else f"{s.kind.value} {s.from_lane}"
            for s in row.segments
        )
        if row.boundary_parents:
            edges = f"{edges}, boundary" if edges else "boundary"
        subject = row.commit.subject
        refs = format_refs(graph, row.commit)
        if refs:
            subject = f"[magenta]{refs}[/magenta] {subject}"
        table.add_row(str(row.index), row.commit.short_hash, str(row.lane), edges, subject)

    console.print(table)


def _cache_dir(config: Optional[Path]) -> Path:
    settings = _load_settings(config)
    return settings.cache.resolve_dir()


@cache_app.command("info")
def cache_info(config: ConfigOpt = None) -> None:
    """Show the render cache location and size."""
    try:
        cache_dir = _cache_dir(config)
    except LanegraphError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    entries = list(cache_dir.glob("*/*.bin")) if cache_dir.exists() else []
    total = sum(entry.stat().st_size for entry in entries)
    console.print(f"[blue]Cache directory:[/blue] {cache_dir}")
    console.print(f"  - Entries: {len(entries)}")
    console.print(f"  - Size: {total // 1024}KB" if total > 1024 else f"  - Size: {total}B")


@cache_app.command("clear")
def cache_clear(config: ConfigOpt = None) -> None:
    """Delete every persisted render cache entry."""
    try:
        cache_dir = _cache_dir(config)
        RenderCache(cache_dir).clear()
    except LanegraphError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except OSError as e:
        err_console.print(f"[red]Error:[/red] Failed to clear {cache_dir}: {e}")
        raise typer.Exit(1)
    console.print(f"[green]OK[/green] Cleared render cache at {cache_dir}")


if __name__ == "__main__":
    app()
