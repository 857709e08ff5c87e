"""Unit tests for the render cache."""

import threading
from dataclasses import replace

import pytest

from lanegraph.config import EdgeStyle
from lanegraph.errors import CacheCorruptionError, EncodingError
from lanegraph.graph.cache import CacheKey, RenderCache, decode_entry, encode_entry
from lanegraph.graph.render import CellWidth
from lanegraph.graph.transport import ImageProtocol


class Counter:
    """Compute function that counts its calls."""

    def __init__(self, value: bytes = b"encoded"):
        self.value = value
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self) -> bytes:
        with self._lock:
            self.calls += 1
        return self.value


@pytest.fixture
def key(diamond_layout, render_options):
    return CacheKey.build(diamond_layout.row_range(0, 2), 2, render_options, ImageProtocol.ITERM)


class TestCacheKey:
    """Test cache key sensitivity."""

    def test_identical_inputs_identical_key(self, diamond_layout, render_options, key):
        """Test rebuilding a key from the same inputs gives an equal key."""
        again = CacheKey.build(diamond_layout.row_range(0, 2), 2, render_options, ImageProtocol.ITERM)
        assert again == key
        assert again.digest == key.digest

    @pytest.mark.parametrize("change", [
        {"edge_style": EdgeStyle.ANGULAR},
        {"palette": ((1, 2, 3, 255),)},
        {"edge_color": (0, 0, 0, 255)},
        {"background_color": (9, 9, 9, 255)},
        {"row_height": 40},
    ])
    def test_visual_field_changes_key(self, diamond_layout, render_options, key, change):
        """Test changing any single visual field changes the key."""
        options = replace(render_options, **change)
        changed = CacheKey.build(diamond_layout.row_range(0, 2), 2, options, ImageProtocol.ITERM)
        assert changed != key

    def test_cell_width_changes_key(self, diamond_layout, render_options, key):
        """Test the resolved cell width is part of the key."""
        options = replace(render_options, cell_width=CellWidth.SINGLE)
        assert CacheKey.build(diamond_layout.row_range(0, 2), 2, options, ImageProtocol.ITERM) != key

    def test_protocol_changes_key(self, diamond_layout, render_options, key):
        """Test iTerm2 and kitty bytes are cached separately."""
        kitty = CacheKey.build(diamond_layout.row_range(0, 2), 2, render_options, ImageProtocol.KITTY)
        assert kitty != key

    def test_row_content_changes_key(self, diamond_layout, render_options, key):
        """Test keys follow row content, not just row indices."""
        other_rows = CacheKey.build(diamond_layout.row_range(1, 3), 2, render_options, ImageProtocol.ITERM)
        wider = CacheKey.build(diamond_layout.row_range(0, 2), 3, render_options, ImageProtocol.ITERM)

        assert other_rows.rows_digest != key.rows_digest
        assert wider != key

    def test_image_id_nonzero(self, key):
        """Test derived kitty image ids fit 32 bits and are never zero."""
        assert 0 < key.image_id < 2 ** 32


class TestGetOrRender:
    """Test memoization and single-flight behaviour."""

    def test_computes_once(self, key):
        """Test two calls with one key compute exactly once."""
        cache = RenderCache()
        compute = Counter()

        assert cache.get_or_render(key, compute) == b"encoded"
        assert cache.get_or_render(key, compute) == b"encoded"
        assert compute.calls == 1
        assert cache.stats.hits == 1
        assert key in cache

    def test_changed_key_misses(self, diamond_layout, render_options, key):
        """Test a changed configuration produces a miss."""
        cache = RenderCache()
        compute = Counter()
        angular = CacheKey.build(
            diamond_layout.row_range(0, 2), 2, replace(render_options, edge_style=EdgeStyle.ANGULAR), ImageProtocol.ITERM
        )

        cache.get_or_render(key, compute)
        cache.get_or_render(angular, compute)

        assert compute.calls == 2
        assert len(cache) == 2

    def test_concurrent_misses_compute_once(self, key):
        """Test concurrent requests for one key share one computation."""
        cache = RenderCache()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_compute():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return b"slow"

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_render(key, slow_compute)))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        assert started.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert len(calls) == 1
        assert results == [b"slow"] * 8

    def test_failure_not_cached(self, key):
        """Test a failing computation propagates and is retried next time."""
        cache = RenderCache()

        def failing():
            raise EncodingError("bad dimensions")

        with pytest.raises(EncodingError):
            cache.get_or_render(key, failing)

        compute = Counter()
        assert cache.get_or_render(key, compute) == b"encoded"
        assert compute.calls == 1

    def test_invalidate_forces_recompute(self, key):
        """Test invalidation drops memoized entries."""
        cache = RenderCache()
        compute = Counter()

        cache.get_or_render(key, compute)
        cache.invalidate()
        cache.get_or_render(key, compute)

        assert compute.calls == 2

    def test_result_straddling_invalidate_is_dropped(self, key):
        """Test a value computed across an invalidation is returned but not kept."""
        cache = RenderCache()

        def compute_then_invalidate():
            cache.invalidate()
            return b"stale"

        assert cache.get_or_render(key, compute_then_invalidate) == b"stale"
        assert key not in cache


class TestPersistence:
    """Test on-disk cache entries."""

    def test_entries_survive_new_instance(self, key, tmp_path):
        """Test a flushed entry is served by a later cache without computing."""
        with RenderCache(tmp_path / "cache") as cache:
            cache.get_or_render(key, Counter(b"persisted"))

        def must_not_run():
            raise AssertionError("rasterized despite persisted entry")

        later = RenderCache(tmp_path / "cache").open()
        assert later.get_or_render(key, must_not_run) == b"persisted"
        assert later.stats.disk_hits == 1

    def test_flush_count(self, key, tmp_path):
        """Test flush reports written entries once."""
        cache = RenderCache(tmp_path).open()
        cache.get_or_render(key, Counter())

        assert cache.flush() == 1
        assert cache.flush() == 0

    def test_memory_only_cache_never_writes(self, key):
        """Test a cache without a directory flushes nothing."""
        cache = RenderCache()
        cache.get_or_render(key, Counter())
        assert cache.flush() == 0

    def test_corrupt_entry_recomputed_and_overwritten(self, key, tmp_path):
        """Test a corrupt entry is a miss and gets replaced."""
        seed = RenderCache(tmp_path).open()
        seed.get_or_render(key, Counter(b"good"))
        seed.flush()
        entry = seed._path(key)
        entry.write_bytes(b"garbage")

        cache = RenderCache(tmp_path).open()
        compute = Counter(b"fresh")
        assert cache.get_or_render(key, compute) == b"fresh"
        assert compute.calls == 1
        assert cache.stats.corrupt == 1

        cache.flush()
        assert decode_entry(entry.read_bytes()) == b"fresh"

    def test_clear_removes_directory(self, key, tmp_path):
        """Test clear deletes persisted entries."""
        cache_dir = tmp_path / "cache"
        with RenderCache(cache_dir) as cache:
            cache.get_or_render(key, Counter())
        assert any(cache_dir.rglob("*.bin"))

        RenderCache(cache_dir).clear()
        assert not cache_dir.exists()


class TestEntryCodec:
    """Test persisted entry validation."""

    def test_decode_valid(self):
        """Test a well-formed entry decodes to its payload."""
        assert decode_entry(encode_entry(b"payload")) == b"payload"

    @pytest.mark.parametrize("data", [b"", b"LGC1", b"XXXX" + b"\0" * 40])
    def test_bad_header(self, data):
        """Test truncated or foreign data is rejected."""
        with pytest.raises(CacheCorruptionError):
            decode_entry(data)

    def test_checksum_mismatch(self):
        """Test a flipped payload byte is detected."""
        data = bytearray(encode_entry(b"payload"))
        data[-1] ^= 0xFF
        with pytest.raises(CacheCorruptionError, match="checksum"):
            decode_entry(bytes(data))
