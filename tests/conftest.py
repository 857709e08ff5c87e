"""Shared fixtures for lanegraph tests."""

from datetime import UTC, datetime, timedelta

import pytest

from lanegraph.config import GraphConfig, OrderMode
from lanegraph.graph.layout import LayoutEngine
from lanegraph.graph.model import Commit, Graph
from lanegraph.graph.render import CellWidth, RenderOptions

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_commit(commit_hash: str, parents=(), minutes: int = 0, subject: str | None = None) -> Commit:
    """Commit whose committer time is BASE_TIME plus ``minutes``."""
    return Commit(
        hash=commit_hash,
        parents=tuple(parents),
        committer_time=BASE_TIME + timedelta(minutes=minutes),
        subject=subject if subject is not None else f"commit {commit_hash}",
        author_name="dev",
        author_email="dev@example.com",
    )


def build(history, order=OrderMode.CHRONOLOGICAL) -> Graph:
    """Build a graph from ``[(hash, parents, minutes), ...]``."""
    return Graph.build([make_commit(h, p, m) for h, p, m in history], order=order)


# c3 -> c2 -> c1
LINEAR = [("c3", ["c2"], 3), ("c2", ["c1"], 2), ("c1", [], 1)]

# M(A, B) with A -> R and B -> R
DIAMOND = [("M", ["A", "B"], 4), ("A", ["R"], 3), ("B", ["R"], 2), ("R", [], 1)]


@pytest.fixture
def commit_factory():
    return make_commit


@pytest.fixture
def graph_factory():
    return build


@pytest.fixture
def linear_graph() -> Graph:
    return build(LINEAR)


@pytest.fixture
def diamond_graph() -> Graph:
    return build(DIAMOND)


@pytest.fixture
def diamond_layout(diamond_graph):
    return LayoutEngine().compute(diamond_graph)


@pytest.fixture
def render_options() -> RenderOptions:
    return RenderOptions.from_config(GraphConfig(), CellWidth.DOUBLE)
