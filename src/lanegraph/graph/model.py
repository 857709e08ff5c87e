"""Commit graph data model and display ordering."""

import heapq
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..config import OrderMode
from ..errors import GraphDataError

logger = logging.getLogger(__name__)


class CommitKind(str, Enum):
    """Commit kinds."""
    COMMIT = "commit"
    STASH = "stash"


class RefKind(str, Enum):
    """Symbolic reference kinds."""
    BRANCH = "branch"
    REMOTE_BRANCH = "remote_branch"
    TAG = "tag"
    STASH = "stash"
    HEAD = "head"


@dataclass(frozen=True)
class Commit:
    """A single commit. Immutable once constructed."""
    hash: str
    parents: tuple[str, ...]
    committer_time: datetime
    subject: str = ""
    author_name: str = ""
    author_email: str = ""
    author_time: datetime | None = None
    committer_name: str = ""
    committer_email: str = ""
    body: str = ""
    refs: tuple[str, ...] = ()
    kind: CommitKind = CommitKind.COMMIT

    @property
    def short_hash(self) -> str:
        return self.hash[:7]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @property
    def is_root(self) -> bool:
        return not self.parents


@dataclass(frozen=True)
class Ref:
    """A symbolic reference pointing at a commit."""
    name: str
    kind: RefKind
    target: str


@dataclass
class Graph:
    """Commit set plus the display order consumed by the layout engine.

    Build with :meth:`Graph.build`; treat instances as read-only afterwards.
    Parents that are not part of the commit set are graph boundaries.
    """
    order: OrderMode
    commits: dict[str, Commit]
    display_order: tuple[str, ...]
    refs: dict[str, tuple[Ref, ...]] = field(default_factory=dict)
    _children: dict[str, tuple[str, ...]] = field(default_factory=dict, repr=False)
    _rows: dict[str, int] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        commits: Iterable[Commit],
        refs: Iterable[Ref] = (),
        order: OrderMode = OrderMode.CHRONOLOGICAL,
    ) -> "Graph":
        """Build a graph and its display order.

        Raises:
            GraphDataError: If two commits share a hash
        """
        commit_map: dict[str, Commit] = {}
        for commit in commits:
            if commit.hash in commit_map:
                raise GraphDataError(f"Duplicate commit hash: {commit.hash}")
            commit_map[commit.hash] = commit

        children: dict[str, list[str]] = {}
        for commit in commit_map.values():
            # A commit listing the same parent twice still has one child edge
            for parent in dict.fromkeys(commit.parents):
                children.setdefault(parent, []).append(commit.hash)

        ref_map: dict[str, list[Ref]] = {}
        for ref in refs:
            ref_map.setdefault(ref.target, []).append(ref)

        order = OrderMode(order)
        if order == OrderMode.TOPOLOGICAL:
            display_order = topological_order(commit_map, children)
        else:
            display_order = chronological_order(commit_map.values())

        graph = cls(
            order=order,
            commits=commit_map,
            display_order=tuple(display_order),
            refs={target: tuple(sorted(rs, key=lambda r: (r.kind.value, r.name))) for target, rs in ref_map.items()},
            _children={parent: tuple(hashes) for parent, hashes in children.items()},
            _rows={commit_hash: i for i, commit_hash in enumerate(display_order)},
        )

        boundaries = sum(1 for c in commit_map.values() for p in c.parents if p not in commit_map)
        logger.debug(
            f"Built {order.value} graph with {len(commit_map)} commits "
            f"and {boundaries} boundary parent links"
        )
        return graph

    def __len__(self) -> int:
        return len(self.display_order)

    def __iter__(self) -> Iterator[Commit]:
        for commit_hash in self.display_order:
            yield self.commits[commit_hash]

    def __contains__(self, commit_hash: str) -> bool:
        return commit_hash in self.commits

    def commit_at(self, row: int) -> Commit:
        return self.commits[self.display_order[row]]

    def row_of(self, commit_hash: str) -> int | None:
        """Display row of a commit, or None for a boundary hash."""
        return self._rows.get(commit_hash)

    def children(self, commit_hash: str) -> tuple[str, ...]:
        return self._children.get(commit_hash, ())

    def is_boundary(self, commit_hash: str) -> bool:
        """True when a referenced parent is missing from the commit set."""
        return commit_hash not in self.commits

    def refs_for(self, commit_hash: str) -> tuple[Ref, ...]:
        return self.refs.get(commit_hash, ())


def _time_key(commit: Commit) -> tuple[float, str]:
    return (-commit.committer_time.timestamp(), commit.hash)


def chronological_order(commits: Iterable[Commit]) -> list[str]:
    """Commit timestamp descending, ties broken by hash ascending."""
    return [c.hash for c in sorted(commits, key=_time_key)]


def topological_order(commits: dict[str, Commit], children: dict[str, list[str]]) -> list[str]:
    """Children before parents, keeping first-parent chains contiguous.

    A commit is ready once all of its children in the set are placed. The
    next commit is the first parent of the last placed commit when it is
    ready, otherwise the newest ready commit (ties by hash).
    """
    pending = {
        commit_hash: len(children.get(commit_hash, ()))
        for commit_hash in commits
    }
    heap = [_time_key(c) for c in commits.values() if pending[c.hash] == 0]
    heapq.heapify(heap)
    ready = {commit_hash for _, commit_hash in heap}
    placed: list[str] = []

    while ready:
        preferred = None
        if placed:
            last = commits[placed[-1]]
            if last.parents and last.parents[0] in ready:
                preferred = last.parents[0]

        if preferred is None:
            while True:
                _, candidate = heapq.heappop(heap)
                if candidate in ready:
                    preferred = candidate
                    break

        ready.discard(preferred)
        placed.append(preferred)

        for parent in dict.fromkeys(commits[preferred].parents):
            if parent not in pending:
                continue
            pending[parent] -= 1
            if pending[parent] == 0:
                ready.add(parent)
                heapq.heappush(heap, _time_key(commits[parent]))

    if len(placed) != len(commits):
        raise GraphDataError("Commit parent links contain a cycle")

    return placed
