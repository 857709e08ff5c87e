"""Commit graph model, layout, rasterization and terminal transport."""

from .cache import CacheKey, RenderCache
from .layout import EdgeSegment, Layout, LayoutEngine, LayoutRow, SegmentKind
from .model import Commit, CommitKind, Graph, Ref, RefKind
from .pipeline import GraphImageManager, RangeResult, Snapshot, resolve_cell_width
from .render import CellWidth, RasterTile, Renderer, RenderOptions
from .transport import ImageProtocol, Passthrough, TerminalWriter, Transport

__all__ = [
    "CacheKey",
    "CellWidth",
    "Commit",
    "CommitKind",
    "EdgeSegment",
    "Graph",
    "GraphImageManager",
    "ImageProtocol",
    "Layout",
    "LayoutEngine",
    "LayoutRow",
    "Passthrough",
    "RangeResult",
    "RasterTile",
    "Ref",
    "RefKind",
    "RenderCache",
    "RenderOptions",
    "Renderer",
    "SegmentKind",
    "Snapshot",
    "TerminalWriter",
    "Transport",
    "resolve_cell_width",
]
