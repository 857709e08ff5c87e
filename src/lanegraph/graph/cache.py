"""Content-addressed cache of transport-ready graph images.

Keys fingerprint everything that affects the emitted bytes: row content
(commit identity, lanes, segments), the image lane count, the full render
options and the image protocol. Values are the encoded escape sequences.

Entries may be persisted under a cache directory so a later run can skip
rasterization for unchanged history::

    <cache_dir>/<digest[:2]>/<digest>.bin

Each file is ``MAGIC + sha256(payload) + payload``; anything else is
treated as corrupt, recomputed and overwritten.
"""

import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import CacheCorruptionError
from .layout import LayoutRow
from .render import RenderOptions
from .transport import ImageProtocol

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1
MAGIC = b"LGC1"
CHECKSUM_SIZE = 32


def _canonical_digest(data) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheKey:
    """Stable fingerprint of a (row range, visual configuration) pair."""
    rows_digest: str
    config_digest: str

    @classmethod
    def build(
        cls,
        rows: Sequence[LayoutRow],
        lane_count: int,
        options: RenderOptions,
        protocol: ImageProtocol,
    ) -> "CacheKey":
        rows_digest = _canonical_digest({
            "lane_count": lane_count,
            "rows": [row.fingerprint() for row in rows],
        })
        config_digest = _canonical_digest({
            "version": CACHE_FORMAT_VERSION,
            "options": options.fingerprint(),
            "protocol": ImageProtocol(protocol).value,
        })
        return cls(rows_digest, config_digest)

    @property
    def digest(self) -> str:
        return hashlib.sha1(f"{self.config_digest}:{self.rows_digest}".encode("ascii")).hexdigest()

    @property
    def image_id(self) -> int:
        """Nonzero 32-bit kitty image id derived from the key."""
        return int(self.digest[:8], 16) or 1


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    disk_hits: int = 0
    computed: int = 0
    corrupt: int = 0


@dataclass
class _Flight:
    """One in-flight computation that concurrent callers wait on."""
    generation: int
    done: threading.Event = field(default_factory=threading.Event)
    value: bytes | None = None
    error: BaseException | None = None


class RenderCache:
    """Memoizes encoded images with single-flight computation per key.

    Use one instance per owner; tests construct independent caches.
    """

    def __init__(self, cache_dir: Path | None = None):
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.stats = CacheStats()
        self._entries: dict[CacheKey, bytes] = {}
        self._flights: dict[CacheKey, _Flight] = {}
        self._pending_writes: dict[CacheKey, bytes] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self._opened = False

    def __enter__(self) -> "RenderCache":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def open(self) -> "RenderCache":
        """Prepare the persistent directory, if any."""
        if self.cache_dir is not None and not self._opened:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Render cache directory unavailable, using memory only: {e}")
                self.cache_dir = None
        self._opened = True
        return self

    def get_or_render(self, key: CacheKey, compute: Callable[[], bytes]) -> bytes:
        """Return the cached value for key, computing it at most once.

        Concurrent callers missing on the same key block until the single
        in-flight computation finishes. If it raises, every waiter sees the
        same exception and nothing is stored.
        """
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self.stats.hits += 1
                return value

            flight = self._flights.get(key)
            owner = flight is None
            if owner:
                self.stats.misses += 1
                flight = _Flight(self._generation)
                self._flights[key] = flight

        if not owner:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        try:
            value = self._load(key)
            if value is None:
                value = compute()
                with self._lock:
                    self.stats.computed += 1
                    if self.cache_dir is not None:
                        self._pending_writes[key] = value
            flight.value = value
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                if self._flights.get(key) is flight:
                    del self._flights[key]
                if flight.error is None and flight.generation == self._generation:
                    self._entries[key] = flight.value
            flight.done.set()

        return value

    def invalidate(self) -> None:
        """Drop every in-memory entry (commit set or display order changed).

        Persisted entries stay: they are content-addressed and remain valid
        for any future snapshot producing the same key.
        """
        with self._lock:
            self._generation += 1
            self._entries.clear()
        logger.debug(f"Render cache invalidated (generation {self._generation})")

    def flush(self) -> int:
        """Write computed entries to disk. Returns the number written."""
        with self._lock:
            pending = self._pending_writes
            self._pending_writes = {}

        if self.cache_dir is None:
            return 0

        written = 0
        for key, value in pending.items():
            try:
                self._store(key, value)
                written += 1
            except OSError as e:
                logger.warning(f"Failed to persist cache entry {key.digest}: {e}")
        if written:
            logger.debug(f"Flushed {written} render cache entries to {self.cache_dir}")
        return written

    def clear(self) -> None:
        """Drop memory entries and delete the persistent directory."""
        self.invalidate()
        with self._lock:
            self._pending_writes.clear()
        if self.cache_dir is not None and self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)
            logger.info(f"Removed render cache directory {self.cache_dir}")

    def _path(self, key: CacheKey) -> Path:
        digest = key.digest
        return self.cache_dir / digest[:2] / f"{digest}.bin"

    def _load(self, key: CacheKey) -> bytes | None:
        if self.cache_dir is None:
            return None
        path = self._path(key)
        if not path.exists():
            return None
        try:
            value = decode_entry(path.read_bytes())
        except (OSError, CacheCorruptionError) as e:
            logger.warning(f"Discarding unreadable cache entry {path.name}: {e}")
            with self._lock:
                self.stats.corrupt += 1
            return None
        with self._lock:
            self.stats.disk_hits += 1
        return value

    def _store(self, key: CacheKey, value: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a crash never leaves a half-written entry
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(encode_entry(value))
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def encode_entry(value: bytes) -> bytes:
    return MAGIC + hashlib.sha256(value).digest() + value


def decode_entry(data: bytes) -> bytes:
    """Validate and unwrap a persisted entry.

    Raises:
        CacheCorruptionError: If the header or checksum does not match
    """
    header_size = len(MAGIC) + CHECKSUM_SIZE
    if len(data) < header_size or not data.startswith(MAGIC):
        raise CacheCorruptionError("bad header")
    checksum = data[len(MAGIC):header_size]
    value = data[header_size:]
    if hashlib.sha256(value).digest() != checksum:
        raise CacheCorruptionError("checksum mismatch")
    return value
