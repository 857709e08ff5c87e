"""Lane assignment and edge routing for commit graphs.

The engine walks commits in display order (children before parents) and
keeps a slot array of open lanes. Each open lane holds the hash of the next
commit expected on it. Lane ids are slot indices, so the lowest free slot
is always the one handed out for a fresh branch tip.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from .model import Commit, Graph

logger = logging.getLogger(__name__)


class SegmentKind(str, Enum):
    """Edge segment kinds within one layout row."""
    PASS = "pass"          # lane runs straight through the row
    INCOMING = "incoming"  # lane enters from the top and ends at the commit
    OUTGOING = "outgoing"  # lane leaves the commit towards the bottom


@dataclass(frozen=True, order=True)
class EdgeSegment:
    """One edge segment inside a row.

    ``from_lane`` is the lane at the top end of the segment and ``to_lane``
    the lane at the bottom end. ``lane`` is the line of descent the segment
    belongs to and selects its color.
    """
    kind: SegmentKind
    from_lane: int
    to_lane: int
    lane: int

    def color_index(self, palette_length: int) -> int:
        return self.lane % palette_length

    @property
    def is_straight(self) -> bool:
        return self.from_lane == self.to_lane


@dataclass(frozen=True)
class LayoutRow:
    """Lane assignment and edge segments for one commit."""
    index: int
    commit: Commit
    lane: int
    lanes_before: tuple[int, ...]
    lanes_after: tuple[int, ...]
    segments: tuple[EdgeSegment, ...]
    boundary_parents: tuple[str, ...] = ()

    @property
    def active_lanes(self) -> tuple[int, ...]:
        """Lanes drawn on this row, including the commit's own lane."""
        return tuple(sorted(set(self.lanes_before) | set(self.lanes_after) | {self.lane}))

    def color_index(self, palette_length: int) -> int:
        return self.lane % palette_length

    def fingerprint(self) -> list:
        """Everything about the row that affects its pixels, as plain data."""
        return [
            self.commit.hash,
            self.lane,
            [[s.kind.value, s.from_lane, s.to_lane, s.lane] for s in self.segments],
            bool(self.boundary_parents),
        ]


@dataclass(frozen=True)
class Layout:
    """Ordered layout rows plus the lane counts needed to size rasters."""
    rows: tuple[LayoutRow, ...]
    max_lanes: int
    max_concurrent: int

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index):
        return self.rows[index]

    def row_range(self, start: int, stop: int) -> tuple[LayoutRow, ...]:
        return self.rows[start:stop]


class LaneSlots:
    """Fixed-identity lane slots: index is the lane id, value the expected hash."""

    def __init__(self):
        self._slots: list[str | None] = []

    def __len__(self) -> int:
        return len(self._slots)

    def open_lanes(self) -> tuple[int, ...]:
        return tuple(i for i, h in enumerate(self._slots) if h is not None)

    def expected(self, lane: int) -> str | None:
        if lane < len(self._slots):
            return self._slots[lane]
        return None

    def lanes_expecting(self, commit_hash: str) -> list[int]:
        return [i for i, h in enumerate(self._slots) if h == commit_hash]

    def lowest_free(self) -> int:
        for i, h in enumerate(self._slots):
            if h is None:
                return i
        return len(self._slots)

    def right_of_occupied(self) -> int:
        occupied = self.open_lanes()
        return occupied[-1] + 1 if occupied else 0

    def assign(self, lane: int, commit_hash: str) -> None:
        while len(self._slots) <= lane:
            self._slots.append(None)
        if self._slots[lane] is not None and self._slots[lane] != commit_hash:
            raise RuntimeError(f"lane {lane} is still open")
        self._slots[lane] = commit_hash

    def release(self, lane: int) -> None:
        if lane < len(self._slots):
            self._slots[lane] = None
        # Trailing closed slots carry no information
        while self._slots and self._slots[-1] is None:
            self._slots.pop()


class LayoutEngine:
    """Assigns commits to lanes and routes parent edges between rows."""

    def compute(self, graph: Graph) -> Layout:
        slots = LaneSlots()
        rows: list[LayoutRow] = []
        max_lanes = 0
        max_concurrent = 0

        for index, commit in enumerate(graph):
            row = self._place(index, commit, graph, slots)
            rows.append(row)
            max_lanes = max(max_lanes, max(row.active_lanes) + 1)
            max_concurrent = max(max_concurrent, len(row.lanes_before), len(row.lanes_after))

        layout = Layout(rows=tuple(rows), max_lanes=max_lanes, max_concurrent=max_concurrent)
        logger.debug(f"Computed layout with {len(rows)} rows and {max_lanes} lanes")
        return layout

    def _place(self, index: int, commit: Commit, graph: Graph, slots: LaneSlots) -> LayoutRow:
        lanes_before = slots.open_lanes()
        segments: list[EdgeSegment] = []

        consumed = slots.lanes_expecting(commit.hash)
        if consumed:
            lane = consumed[0]
            for incoming in consumed:
                segments.append(EdgeSegment(SegmentKind.INCOMING, incoming, lane, incoming))
                slots.release(incoming)
        else:
            lane = slots.lowest_free()

        boundary: list[str] = []
        targets: list[int] = []
        continues = False

        for position, parent in enumerate(dict.fromkeys(commit.parents)):
            parent_row = graph.row_of(parent)
            if parent_row is None or parent_row <= index:
                boundary.append(parent)
                continue

            if position == 0:
                slots.assign(lane, parent)
                targets.append(lane)
                continues = True
                continue

            if not continues and lane not in slots.open_lanes():
                # Hold the commit's own slot so it is not reused below
                slots.assign(lane, commit.hash)

            attached = slots.lanes_expecting(parent)
            if attached:
                target = attached[0]
            else:
                target = slots.right_of_occupied()
                slots.assign(target, parent)
            targets.append(target)

        if not continues and slots.expected(lane) == commit.hash:
            slots.release(lane)

        for target in targets:
            segments.append(EdgeSegment(SegmentKind.OUTGOING, lane, target, target))

        lanes_after = slots.open_lanes()
        consumed_set = set(consumed)
        for passing in sorted(set(lanes_before) & set(lanes_after)):
            if passing not in consumed_set:
                segments.append(EdgeSegment(SegmentKind.PASS, passing, passing, passing))

        return LayoutRow(
            index=index,
            commit=commit,
            lane=lane,
            lanes_before=lanes_before,
            lanes_after=lanes_after,
            segments=tuple(sorted(segments)),
            boundary_parents=tuple(boundary),
        )
