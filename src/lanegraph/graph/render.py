"""Rasterization of layout rows into PNG images."""

import io
import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from enum import Enum

from PIL import Image, ImageColor, ImageDraw

from ..config import EdgeStyle, GraphConfig
from ..errors import EncodingError
from .layout import EdgeSegment, LayoutRow, SegmentKind

logger = logging.getLogger(__name__)

RGBA = tuple[int, int, int, int]

ROW_HEIGHT = 50
DOUBLE_LANE_WIDTH = 50
SINGLE_LANE_WIDTH = 25
CURVE_STEPS = 16


class CellWidth(str, Enum):
    """Resolved cell width: terminal columns per lane."""
    DOUBLE = "double"
    SINGLE = "single"

    @property
    def columns_per_lane(self) -> int:
        return 2 if self == CellWidth.DOUBLE else 1


def to_rgba(color: str) -> RGBA:
    """Parse a color string (#rgb, #rrggbb, #rrggbbaa, names) into RGBA."""
    value = ImageColor.getrgb(color)
    if len(value) == 3:
        return (value[0], value[1], value[2], 255)
    return tuple(value)


@dataclass(frozen=True)
class RenderOptions:
    """Resolved visual configuration for the renderer."""
    cell_width: CellWidth
    edge_style: EdgeStyle
    palette: tuple[RGBA, ...]
    edge_color: RGBA
    background_color: RGBA
    row_height: int = ROW_HEIGHT
    supersample: int = 2

    @classmethod
    def from_config(cls, config: GraphConfig, cell_width: CellWidth) -> "RenderOptions":
        return cls(
            cell_width=CellWidth(cell_width),
            edge_style=EdgeStyle(config.edge_style),
            palette=tuple(to_rgba(c) for c in config.palette),
            edge_color=to_rgba(config.edge_color),
            background_color=to_rgba(config.background_color),
        )

    @property
    def lane_width(self) -> int:
        return DOUBLE_LANE_WIDTH if self.cell_width == CellWidth.DOUBLE else SINGLE_LANE_WIDTH

    @property
    def line_width(self) -> int:
        return 5 if self.cell_width == CellWidth.DOUBLE else 3

    @property
    def circle_radius(self) -> int:
        return 14 if self.cell_width == CellWidth.DOUBLE else 8

    def lane_color(self, lane: int) -> RGBA:
        return self.palette[lane % len(self.palette)]

    def fingerprint(self) -> dict:
        """Plain-data view of every field that changes pixel output."""
        data = asdict(self)
        data["cell_width"] = self.cell_width.value
        data["edge_style"] = self.edge_style.value
        data["palette"] = [list(c) for c in self.palette]
        data["edge_color"] = list(self.edge_color)
        data["background_color"] = list(self.background_color)
        return data


@dataclass(frozen=True)
class RasterTile:
    """Encoded image covering rows [start, stop)."""
    start: int
    stop: int
    width_px: int
    height_px: int
    columns: int
    rows: int
    png: bytes

    def __repr__(self) -> str:
        return (
            f"RasterTile(start={self.start}, stop={self.stop}, "
            f"size={self.width_px}x{self.height_px}, png=[{len(self.png)} bytes])"
        )


class Renderer:
    """Draws commit circles and lane edges for a contiguous row range."""

    def __init__(self, options: RenderOptions):
        self.options = options

    def render(self, rows: Sequence[LayoutRow], lane_count: int) -> RasterTile:
        """Rasterize rows into a PNG-encoded tile.

        Args:
            rows: Contiguous layout rows
            lane_count: Lane count of the whole layout (sets the image width)

        Raises:
            EncodingError: If the range is empty or cannot be encoded
        """
        self._check(rows, lane_count)
        opts = self.options
        start, stop = rows[0].index, rows[-1].index + 1

        width = lane_count * opts.lane_width
        height = len(rows) * opts.row_height
        scale = opts.supersample

        canvas = Image.new("RGBA", (width * scale, height * scale), opts.background_color)
        draw = ImageDraw.Draw(canvas)

        for offset, row in enumerate(rows):
            self._draw_row(draw, row, offset * opts.row_height)

        if scale > 1:
            canvas = canvas.resize((width, height), Image.Resampling.LANCZOS)

        png = self._encode(canvas, start, stop)
        logger.debug(f"Rendered rows {start}-{stop} into {width}x{height} image ({len(png)} bytes)")

        return RasterTile(
            start=start,
            stop=stop,
            width_px=width,
            height_px=height,
            columns=lane_count * opts.cell_width.columns_per_lane,
            rows=len(rows),
            png=png,
        )

    def _check(self, rows: Sequence[LayoutRow], lane_count: int) -> None:
        if not rows:
            raise EncodingError("Cannot render an empty row range")
        start, stop = rows[0].index, rows[-1].index + 1
        if lane_count < 1:
            raise EncodingError(f"Invalid lane count {lane_count}", start, stop)
        if [r.index for r in rows] != list(range(start, stop)):
            raise EncodingError("Row range is not contiguous", start, stop)
        widest = max(max(r.active_lanes) for r in rows)
        if widest >= lane_count:
            raise EncodingError(f"Row uses lane {widest} but image has {lane_count} lanes", start, stop)

    def _encode(self, image: Image.Image, start: int, stop: int) -> bytes:
        buffer = io.BytesIO()
        try:
            image.save(buffer, format="PNG")
        except (OSError, ValueError) as e:
            raise EncodingError(f"PNG encoding failed: {e}", start, stop) from e
        return buffer.getvalue()

    # Drawing helpers work in supersampled pixel space

    def _x(self, lane: int) -> float:
        opts = self.options
        return (lane * opts.lane_width + opts.lane_width / 2) * opts.supersample

    def _draw_row(self, draw: ImageDraw.ImageDraw, row: LayoutRow, y0: int) -> None:
        opts = self.options
        s = opts.supersample
        top = y0 * s
        bottom = (y0 + opts.row_height) * s
        center = (y0 + opts.row_height / 2) * s

        for segment in row.segments:
            color = opts.lane_color(segment.lane)
            points = self._segment_points(segment, top, center, bottom)
            draw.line(points, fill=color, width=opts.line_width * s, joint="curve")

        x = self._x(row.lane)
        parents = row.commit.parents
        # Only a boundary first parent leaves the lane without an outgoing edge
        if parents and parents[0] in row.boundary_parents:
            stub_end = center + opts.row_height * 0.35 * s
            draw.line([(x, center), (x, stub_end)], fill=opts.lane_color(row.lane), width=opts.line_width * s)

        r = opts.circle_radius * s
        draw.ellipse(
            (x - r, center - r, x + r, center + r),
            fill=opts.lane_color(row.lane),
            outline=opts.edge_color,
            width=2 * s,
        )

    def _segment_points(self, segment: EdgeSegment, top: float, center: float, bottom: float) -> list:
        x_from = self._x(segment.from_lane)
        x_to = self._x(segment.to_lane)

        if segment.kind == SegmentKind.PASS:
            return [(x_from, top), (x_from, bottom)]

        if segment.kind == SegmentKind.INCOMING:
            start, end = (x_from, top), (x_to, center)
            corner = (x_from, center)
        else:
            start, end = (x_from, center), (x_to, bottom)
            corner = (x_to, center)

        if segment.is_straight:
            return [start, end]

        if self.options.edge_style == EdgeStyle.ROUNDED:
            return _quadratic_bezier(start, corner, end, CURVE_STEPS)

        quarter = (bottom - top) / 4
        if segment.kind == SegmentKind.INCOMING:
            return [start, (x_from, center - quarter), end]
        return [start, (x_to, center + quarter), end]


def _quadratic_bezier(p0: tuple, p1: tuple, p2: tuple, steps: int) -> list:
    points = []
    for i in range(steps + 1):
        t = i / steps
        u = 1 - t
        x = u * u * p0[0] + 2 * u * t * p1[0] + t * t * p2[0]
        y = u * u * p0[1] + 2 * u * t * p1[1] + t * t * p2[1]
        points.append((x, y))
    return points
