"""Graph image pipeline: layout snapshot -> cache -> renderer -> transport."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from ..config import CellWidthMode
from ..diagnostics import ErrorCollector, ErrorContext
from ..errors import EncodingError, TerminalTooSmallError
from .cache import CacheKey, RenderCache
from .layout import Layout, LayoutEngine
from .model import Graph
from .render import CellWidth, Renderer, RenderOptions
from .transport import Transport

logger = logging.getLogger(__name__)

# Columns kept free next to the graph image
GRAPH_MARGIN_COLUMNS = 2


def resolve_cell_width(mode: CellWidthMode, lane_count: int, terminal_columns: int | None) -> CellWidth:
    """Resolve the cell width mode against the available terminal width.

    Auto prefers double width and falls back to single when double does not
    fit. With no known terminal width the requested (or double) mode is used.

    Raises:
        TerminalTooSmallError: If the resolved mode cannot fit
    """
    mode = CellWidthMode(mode)
    lanes = max(lane_count, 1)
    double_required = lanes * 2 + GRAPH_MARGIN_COLUMNS
    single_required = lanes + GRAPH_MARGIN_COLUMNS

    if mode == CellWidthMode.DOUBLE:
        if terminal_columns is not None and double_required > terminal_columns:
            raise TerminalTooSmallError(double_required, terminal_columns)
        return CellWidth.DOUBLE

    if mode == CellWidthMode.SINGLE:
        if terminal_columns is not None and single_required > terminal_columns:
            raise TerminalTooSmallError(single_required, terminal_columns)
        return CellWidth.SINGLE

    if terminal_columns is None or double_required <= terminal_columns:
        return CellWidth.DOUBLE
    if single_required <= terminal_columns:
        return CellWidth.SINGLE
    raise TerminalTooSmallError(single_required, terminal_columns)


@dataclass(frozen=True)
class Snapshot:
    """A graph and its layout, published together."""
    graph: Graph
    layout: Layout

    @classmethod
    def compute(cls, graph: Graph) -> "Snapshot":
        return cls(graph, LayoutEngine().compute(graph))


@dataclass(frozen=True)
class RangeResult:
    """Outcome of rendering one tile."""
    start: int
    stop: int
    data: bytes | None = None
    error: EncodingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class GraphImageManager:
    """Serves transport-ready images for row ranges of the current snapshot.

    Rows are grouped into fixed tiles of ``tile_rows`` rows; each tile is one
    image and one cache entry. With ``preload`` every tile is rendered before
    the constructor returns, otherwise tiles render on first request.
    """

    def __init__(
        self,
        graph: Graph,
        layout: Layout,
        options: RenderOptions,
        transport: Transport,
        cache: RenderCache,
        tile_rows: int = 1,
        preload: bool = False,
        max_workers: int | None = None,
        collector: ErrorCollector | None = None,
        renderer: Renderer | None = None,
    ):
        if tile_rows < 1:
            raise ValueError("tile_rows must be >= 1")
        self.options = options
        self.transport = transport
        self.cache = cache
        self.tile_rows = tile_rows
        self.max_workers = max_workers
        self.collector = collector
        self._renderer = renderer or Renderer(options)
        self._snapshot = Snapshot(graph, layout)
        self._lock = threading.Lock()

        if preload:
            self.preload()

    @property
    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def refresh(self, graph: Graph, layout: Layout) -> None:
        """Publish a new snapshot and drop images of the old one."""
        snapshot = Snapshot(graph, layout)
        with self._lock:
            self._snapshot = snapshot
            self.cache.invalidate()
        logger.info(f"Published snapshot with {len(snapshot.layout)} rows")

    def ranges(self, snapshot: Snapshot | None = None) -> list[tuple[int, int]]:
        """All tile ranges of the snapshot, in row order."""
        snapshot = snapshot or self.snapshot
        total = len(snapshot.layout)
        return [(start, min(start + self.tile_rows, total)) for start in range(0, total, self.tile_rows)]

    def tile_for(self, row: int) -> tuple[int, int]:
        total = len(self.snapshot.layout)
        if not 0 <= row < total:
            raise IndexError(f"row {row} out of range (0..{total - 1})")
        start = row - row % self.tile_rows
        return start, min(start + self.tile_rows, total)

    def key_for(self, start: int, stop: int, snapshot: Snapshot | None = None) -> CacheKey:
        snapshot = snapshot or self.snapshot
        return CacheKey.build(
            snapshot.layout.row_range(start, stop),
            snapshot.layout.max_lanes,
            self.options,
            self.transport.protocol,
        )

    def encoded_range(self, start: int, stop: int) -> bytes:
        """Transport-ready bytes for rows [start, stop).

        Raises:
            EncodingError: If the range cannot be rendered
        """
        snapshot = self.snapshot
        key = self.key_for(start, stop, snapshot)
        return self.cache.get_or_render(key, lambda: self._compute(snapshot, start, stop, key))

    def encoded_row(self, row: int) -> bytes:
        """Bytes of the tile containing ``row``."""
        return self.encoded_range(*self.tile_for(row))

    def render_window(self, start: int, stop: int) -> list[RangeResult]:
        """Render every tile overlapping rows [start, stop).

        Tiles render in parallel; a failing tile becomes an error result and
        does not affect the others. Results come back in row order.
        """
        snapshot = self.snapshot
        total = len(snapshot.layout)
        start, stop = max(start, 0), min(stop, total)
        if start >= stop:
            return []
        first = start - start % self.tile_rows
        tiles = [
            (tile_start, min(tile_start + self.tile_rows, total))
            for tile_start in range(first, stop, self.tile_rows)
        ]
        return self._render_tiles(snapshot, tiles)

    def preload(self) -> list[RangeResult]:
        """Render every tile of the current snapshot up front."""
        snapshot = self.snapshot
        results = self._render_tiles(snapshot, self.ranges(snapshot))
        failed = sum(1 for r in results if not r.ok)
        logger.info(f"Preloaded {len(results)} graph tiles ({failed} failed)")
        return results

    def _render_tiles(self, snapshot: Snapshot, tiles: list[tuple[int, int]]) -> list[RangeResult]:
        if len(tiles) <= 1 or self.max_workers == 1:
            return [self._render_tile(snapshot, start, stop) for start, stop in tiles]
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="lanegraph-render") as pool:
            futures = [pool.submit(self._render_tile, snapshot, start, stop) for start, stop in tiles]
            return [f.result() for f in futures]

    def _render_tile(self, snapshot: Snapshot, start: int, stop: int) -> RangeResult:
        key = self.key_for(start, stop, snapshot)
        try:
            data = self.cache.get_or_render(key, lambda: self._compute(snapshot, start, stop, key))
        except EncodingError as e:
            logger.warning(f"Failed to render rows {start}-{stop}: {e}")
            if self.collector is not None:
                self.collector.collect_error(e, ErrorContext("render_range", "Renderer", start, stop))
            return RangeResult(start, stop, error=e)
        return RangeResult(start, stop, data=data)

    def _compute(self, snapshot: Snapshot, start: int, stop: int, key: CacheKey) -> bytes:
        rows = snapshot.layout.row_range(start, stop)
        tile = self._renderer.render(rows, snapshot.layout.max_lanes)
        return self.transport.encode(tile.png, tile.columns, tile.rows, key.image_id)
