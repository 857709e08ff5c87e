"""Unit tests for the graph image pipeline."""

import threading

import pytest

from lanegraph.config import CellWidthMode
from lanegraph.diagnostics import ErrorCollector
from lanegraph.errors import EncodingError, TerminalTooSmallError
from lanegraph.graph.cache import RenderCache
from lanegraph.graph.layout import LayoutEngine
from lanegraph.graph.pipeline import GraphImageManager, Snapshot, resolve_cell_width
from lanegraph.graph.render import CellWidth, Renderer
from lanegraph.graph.transport import ImageProtocol, Transport


class CountingRenderer(Renderer):
    """Renderer recording every rasterized range."""

    def __init__(self, options, fail_rows=()):
        super().__init__(options)
        self.fail_rows = set(fail_rows)
        self.calls: list[tuple[int, int]] = []
        self._lock = threading.Lock()

    def render(self, rows, lane_count):
        with self._lock:
            self.calls.append((rows[0].index, rows[-1].index + 1))
        if any(row.index in self.fail_rows for row in rows):
            raise EncodingError("simulated failure", rows[0].index, rows[-1].index + 1)
        return super().render(rows, lane_count)


@pytest.fixture
def make_manager(diamond_graph, diamond_layout, render_options):
    def factory(**kwargs):
        renderer = kwargs.pop("renderer", None) or CountingRenderer(render_options)
        manager = GraphImageManager(
            diamond_graph,
            diamond_layout,
            render_options,
            Transport(kwargs.pop("protocol", ImageProtocol.ITERM)),
            kwargs.pop("cache", None) or RenderCache(),
            renderer=renderer,
            **kwargs,
        )
        return manager, renderer
    return factory


class TestResolveCellWidth:
    """Test cell width policy."""

    def test_auto_prefers_double(self):
        """Test auto picks double cells when they fit."""
        assert resolve_cell_width(CellWidthMode.AUTO, 10, 80) == CellWidth.DOUBLE

    def test_auto_falls_back_to_single(self):
        """Test auto picks single cells on narrow terminals."""
        assert resolve_cell_width(CellWidthMode.AUTO, 10, 15) == CellWidth.SINGLE

    def test_auto_too_small(self):
        """Test auto fails when even single cells do not fit."""
        with pytest.raises(TerminalTooSmallError) as exc_info:
            resolve_cell_width(CellWidthMode.AUTO, 10, 5)
        assert exc_info.value.required_columns == 12

    def test_explicit_double_too_small(self):
        """Test an explicit mode is checked, not downgraded."""
        with pytest.raises(TerminalTooSmallError, match="22 columns"):
            resolve_cell_width(CellWidthMode.DOUBLE, 10, 15)

    def test_unknown_terminal_width(self):
        """Test no terminal width keeps the requested mode."""
        assert resolve_cell_width(CellWidthMode.AUTO, 50, None) == CellWidth.DOUBLE
        assert resolve_cell_width(CellWidthMode.SINGLE, 50, None) == CellWidth.SINGLE


class TestLaziness:
    """Test lazy versus preloaded rasterization."""

    def test_lazy_renders_nothing_up_front(self, make_manager):
        """Test preload=False rasterizes only requested ranges."""
        manager, renderer = make_manager(preload=False)
        assert renderer.calls == []

        manager.encoded_row(2)
        assert renderer.calls == [(2, 3)]

    def test_preload_renders_everything_first(self, make_manager):
        """Test preload=True rasterizes every range before the first request returns."""
        manager, renderer = make_manager(preload=True)
        assert sorted(renderer.calls) == [(0, 1), (1, 2), (2, 3), (3, 4)]

        manager.encoded_row(0)
        assert len(renderer.calls) == 4

    def test_repeat_request_hits_cache(self, make_manager):
        """Test the same range is rasterized once."""
        manager, renderer = make_manager()
        first = manager.encoded_range(0, 1)
        second = manager.encoded_range(0, 1)

        assert first == second
        assert renderer.calls == [(0, 1)]


class TestTiles:
    """Test tile ranges and window rendering."""

    def test_ranges_with_tile_rows(self, make_manager):
        """Test rows are grouped into fixed tiles."""
        manager, _ = make_manager(tile_rows=3)
        assert manager.ranges() == [(0, 3), (3, 4)]
        assert manager.tile_for(1) == (0, 3)
        assert manager.tile_for(3) == (3, 4)

    def test_tile_for_out_of_range(self, make_manager):
        """Test rows outside the layout are rejected."""
        manager, _ = make_manager()
        with pytest.raises(IndexError):
            manager.tile_for(4)

    def test_render_window_in_row_order(self, make_manager):
        """Test window results cover overlapping tiles in order."""
        manager, _ = make_manager(tile_rows=2, max_workers=4)
        results = manager.render_window(1, 4)

        assert [(r.start, r.stop) for r in results] == [(0, 2), (2, 4)]
        assert all(r.ok and r.data.startswith(b"\x1b]1337;") for r in results)

    def test_render_window_clamps(self, make_manager):
        """Test out-of-bounds windows are clamped."""
        manager, _ = make_manager()
        assert manager.render_window(10, 20) == []
        assert len(manager.render_window(-5, 1)) == 1

    def test_failing_tile_isolated(self, make_manager, render_options):
        """Test one failing range yields an error result while others succeed."""
        collector = ErrorCollector("test")
        renderer = CountingRenderer(render_options, fail_rows={1})
        manager, _ = make_manager(renderer=renderer, collector=collector)

        results = manager.render_window(0, 4)

        assert [r.ok for r in results] == [True, False, True, True]
        assert isinstance(results[1].error, EncodingError)
        assert collector.failed_ranges() == [(1, 2)]

    def test_failing_range_raises_directly(self, make_manager, render_options):
        """Test encoded_range surfaces the error to the caller."""
        renderer = CountingRenderer(render_options, fail_rows={0})
        manager, _ = make_manager(renderer=renderer)

        with pytest.raises(EncodingError):
            manager.encoded_range(0, 1)

    def test_kitty_output(self, make_manager):
        """Test kitty transport bytes use the key-derived image id."""
        manager, _ = make_manager(protocol=ImageProtocol.KITTY)
        data = manager.encoded_row(0)

        image_id = manager.key_for(0, 1).image_id
        assert data.startswith(b"\x1b_G")
        assert f"i={image_id},".encode("ascii") in data


class TestRefresh:
    """Test snapshot publication."""

    def test_refresh_invalidates(self, make_manager, graph_factory):
        """Test a refresh swaps the snapshot and drops cached images."""
        manager, renderer = make_manager()
        manager.encoded_row(0)

        graph = graph_factory([("x", [], 1)])
        layout = LayoutEngine().compute(graph)
        manager.refresh(graph, layout)

        assert manager.snapshot.graph is graph
        assert manager.ranges() == [(0, 1)]
        manager.encoded_row(0)
        assert len(renderer.calls) == 2

    def test_snapshot_compute(self, diamond_graph, diamond_layout):
        """Test Snapshot.compute lays the graph out."""
        snapshot = Snapshot.compute(diamond_graph)
        assert snapshot.layout == diamond_layout

    def test_invalid_tile_rows(self, make_manager):
        """Test tile size must be positive."""
        with pytest.raises(ValueError):
            make_manager(tile_rows=0)
